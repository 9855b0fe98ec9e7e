from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import structlog

from application.commands import ExternalContext
from domain.errors import AccountLinkError, StorageError
from domain.models import User
from domain.repositories import IdentityRepository

logger = structlog.get_logger("netbot.accounts")


@dataclass
class OperationResult:
    """Generic result type for simple operations."""

    success: bool
    message: Optional[str] = None
    user: Optional[User] = None


@dataclass
class LinkRequestResult:
    """Result of asking to link the caller with an account on another platform."""

    success: bool
    error_message: Optional[str] = None
    token: Optional[str] = None
    target_username: Optional[str] = None


@dataclass
class ApiKeyResult:
    success: bool
    error_message: Optional[str] = None
    api_key: Optional[str] = None


def _resolve_user(ctx: ExternalContext, identity_repo: IdentityRepository) -> User:
    return identity_repo.get_or_create_by_platform_id(ctx.platform, ctx.platform_user_id)


def request_account_link(
    ctx: ExternalContext,
    target_username: str,
    identity_repo: IdentityRepository,
) -> LinkRequestResult:
    """
    Start linking the caller's account with `target_username` elsewhere.

    A fresh token replaces any previous pending request. The caller must
    deliver the token to the other account, which confirms with it.
    """

    target_username = target_username.strip()
    if not target_username or " " in target_username:
        return LinkRequestResult(
            success=False,
            error_message="Please give a single username to link with.",
        )

    user = _resolve_user(ctx, identity_repo)
    token = identity_repo.issue_link_token(user, target_username)
    logger.info(
        "link_token_issued",
        user_id=user.id,
        platform=ctx.platform,
        target_username=target_username,
    )
    return LinkRequestResult(success=True, token=token, target_username=target_username)


def confirm_account_link(
    ctx: ExternalContext,
    token: str,
    identity_repo: IdentityRepository,
) -> OperationResult:
    """
    Merge the caller's account with the one that requested a link to them.

    The pending request must name the caller's username on this platform
    and carry the same token. Storage failures are reported as a normal
    result; nothing is half-merged in that case.
    """

    if not ctx.username:
        return OperationResult(
            success=False,
            message="You need a username on this platform to confirm a link.",
        )

    requester = identity_repo.find_by_link_token(ctx.username, token.strip())
    if requester is None:
        return OperationResult(success=False, message="Invalid or expired link token.")

    confirmer = _resolve_user(ctx, identity_repo)
    if confirmer.id == requester.id:
        return OperationResult(success=False, message="These accounts are already linked.")

    try:
        merged = identity_repo.link_accounts(requester, confirmer)
    except AccountLinkError as exc:
        return OperationResult(success=False, message=str(exc))
    except StorageError:
        logger.exception(
            "account_link_failed",
            requester_id=requester.id,
            confirmer_id=confirmer.id,
        )
        return OperationResult(
            success=False,
            message="Linking failed, please try again later.",
        )

    logger.info(
        "accounts_linked",
        user_id=merged.id,
        merged_from=[requester.id, confirmer.id],
        platforms=sorted(merged.platform_ids),
    )
    platforms = ", ".join(sorted(merged.platform_ids))
    return OperationResult(
        success=True,
        message=f"Accounts linked! This account is now connected to: {platforms}",
        user=merged,
    )


def regenerate_api_key(
    ctx: ExternalContext,
    identity_repo: IdentityRepository,
) -> ApiKeyResult:
    """Issue a new API key for the caller; the previous key stops working."""

    user = _resolve_user(ctx, identity_repo)
    api_key = identity_repo.rotate_api_key(user)
    logger.info("api_key_rotated", user_id=user.id, platform=ctx.platform)
    return ApiKeyResult(success=True, api_key=api_key)


def describe_account(
    ctx: ExternalContext,
    identity_repo: IdentityRepository,
) -> OperationResult:
    user = _resolve_user(ctx, identity_repo)
    platforms = ", ".join(sorted(user.platform_ids))
    lines = [
        f"Class: {user.user_class.value}",
        f"Linked platforms: {platforms}",
    ]
    if user.link_token:
        target_username = user.link_token.split(" ", 1)[0]
        lines.append(f"Pending link request for: {target_username}")
    return OperationResult(success=True, message="\n".join(lines), user=user)
