"""
Identity Collaborator

Authentication and sessions are handled outside the core. The core only
asks "who is calling?" through this interface and treats None as
unauthenticated.
"""

from abc import ABC, abstractmethod
from typing import Optional

from project_tracker.models.records import Principal


class IdentityProviderInterface(ABC):
    """Resolves the principal for the current call."""

    @abstractmethod
    async def current_principal(self) -> Optional[Principal]:
        """
        Return the authenticated principal, or None if there is none.
        """
        pass


class StaticIdentityProvider(IdentityProviderInterface):
    """
    Identity provider that always returns the same principal.

    Useful for in-process tools, scripts and tests. Pass None to simulate
    an unauthenticated caller.
    """

    def __init__(self, principal: Optional[Principal] = None):
        self._principal = principal

    def set_principal(self, principal: Optional[Principal]) -> None:
        self._principal = principal

    async def current_principal(self) -> Optional[Principal]:
        return self._principal
