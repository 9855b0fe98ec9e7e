from __future__ import annotations

from typing import Optional, Protocol

from .models import User


class IdentityRepository(Protocol):
    """
    Persistence abstraction for user identity records.

    Records are keyed by internal ID but usually looked up through one of
    their external identities (platform + platform user ID). The
    application layer never sees SQL or driver details; implementations
    raise `StorageError` when the backing store fails.
    """

    def get_user(self, user_id: str) -> Optional[User]:
        """Return the user with the given internal ID, or None if not found."""

        ...

    def find_by_platform_id(
        self,
        platform: str,
        platform_user_id: str,
    ) -> Optional[User]:
        """Return the user mapped to the given external identity, if any."""

        ...

    def get_or_create_by_platform_id(
        self,
        platform: str,
        platform_user_id: str,
    ) -> User:
        """
        Return the user for an external identity, creating it on first contact.

        New records get a generated internal ID and API key.
        """

        ...

    def find_by_api_key(self, api_key: str) -> Optional[User]:
        ...

    def issue_link_token(self, user: User, target_username: str) -> str:
        """
        Store a fresh link request on `user` and return the raw token.

        The stored value is `"<target_username> <token>"`; the token itself
        is meant to be delivered out of band to the other account.
        """

        ...

    def find_by_link_token(self, username: str, token: str) -> Optional[User]:
        """Return the user whose pending link value is `"<username> <token>"`."""

        ...

    def link_accounts(self, first: User, second: User) -> User:
        """
        Replace two records by a single merged one.

        Deleting both sources and inserting the merged record happen in one
        transaction: on failure nothing changes and `StorageError` is
        raised. Invalid pairs raise `AccountLinkError` before any write.
        """

        ...

    def rotate_api_key(self, user: User) -> str:
        """Generate, persist and return a new API key for `user`."""

        ...
