from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional

from .errors import AccountLinkError


class UserClass(str, Enum):
    """Privilege class of a user. Compare with `rank_of`, not by value."""

    USER = "user"
    ADMIN = "admin"


# Explicit total order over privilege classes. Every member must be listed.
USER_CLASS_RANK: Dict[UserClass, int] = {
    UserClass.USER: 0,
    UserClass.ADMIN: 1,
}


def rank_of(user_class: UserClass) -> int:
    return USER_CLASS_RANK[user_class]


def higher_user_class(first: UserClass, second: UserClass) -> UserClass:
    """Return the higher ranked of two classes (the first one on a tie)."""

    if rank_of(second) > rank_of(first):
        return second
    return first


class LinkState(str, Enum):
    UNLINKED = "unlinked"
    PENDING = "pending"
    LINKED = "linked"


@dataclass
class User:
    """
    Identity record for a person talking to the bot.

    A single record can carry one external identifier per chat platform
    (Discord, Telegram, ...). Records start out bound to the platform they
    were first seen on and are merged into one when the person links their
    accounts.
    """

    id: str
    api_key: str
    user_class: UserClass = UserClass.USER
    platform_ids: Dict[str, str] = field(default_factory=dict)
    link_token: Optional[str] = None

    def is_admin(self) -> bool:
        return self.user_class is UserClass.ADMIN

    @property
    def link_state(self) -> LinkState:
        if self.link_token:
            return LinkState.PENDING
        if len(self.platform_ids) > 1:
            return LinkState.LINKED
        return LinkState.UNLINKED


def format_link_value(username: str, token: str) -> str:
    """The value stored on a record while a link request is pending."""

    return f"{username} {token}"


def new_identifier() -> str:
    return str(uuid.uuid4())


def merge_users(first: User, second: User) -> User:
    """
    Build the record that replaces `first` and `second` after linking.

    The merged record gets a fresh id and API key, every platform
    identifier of both inputs and the higher of the two privilege classes.
    Nothing is persisted here; repositories swap the records atomically.
    """

    if first.id == second.id:
        raise AccountLinkError("Cannot link an account with itself.")

    for platform, platform_user_id in first.platform_ids.items():
        other = second.platform_ids.get(platform)
        if other is not None and other != platform_user_id:
            raise AccountLinkError(
                f"Both accounts already have a {platform} identity."
            )

    return User(
        id=new_identifier(),
        api_key=new_identifier(),
        user_class=higher_user_class(first.user_class, second.user_class),
        platform_ids={**second.platform_ids, **first.platform_ids},
        link_token=None,
    )
