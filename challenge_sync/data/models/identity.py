"""Resolved identities that never travel on the wire."""

from dataclasses import dataclass


@dataclass(frozen=True)
class Copilot:
    """Git-host credentials of the copilot (or owner) acting for a repository.

    Attributes:
        handle: Platform handle of the copilot
        user_provider_id: Numeric user id on the git host
        access_token: Token used to call the git host as this user
    """

    handle: str
    user_provider_id: int
    access_token: str

    def __repr__(self) -> str:
        return f"Copilot(handle={self.handle!r}, user_provider_id={self.user_provider_id})"
