"""
Authenticated-user collaborator.

The capture workflow never reads an ambient session: the caller resolves the
user id once from an AuthProvider and threads it into every component.
"""

import os
from typing import Optional, Protocol

from fluxpense.exception import UserNotAuthenticated
from fluxpense.logger import get_logger

logger = get_logger(__name__)


class AuthProvider(Protocol):
    def get_current_user_id(self) -> Optional[str]:
        ...


class StaticAuthProvider:
    """Resolves a fixed user id, e.g. one supplied by the hosting page after login."""

    def __init__(self, user_id: Optional[str] = None):
        self.user_id = user_id

    def get_current_user_id(self) -> Optional[str]:
        return self.user_id


class EnvAuthProvider:
    """Single-user deployments: the user id comes from FLUXPENSE_USER_ID."""

    def __init__(self, env_var: str = "FLUXPENSE_USER_ID"):
        self.env_var = env_var

    def get_current_user_id(self) -> Optional[str]:
        return os.getenv(self.env_var)


def require_user_id(provider: Optional[AuthProvider]) -> str:
    """Returns the authenticated user id or raises UserNotAuthenticated."""
    user_id = provider.get_current_user_id() if provider is not None else None
    if not user_id:
        logger.warning("No authenticated user available for the capture workflow.")
        raise UserNotAuthenticated("You must be signed in to add expenses.")
    return str(user_id)
