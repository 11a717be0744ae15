"""
auth.py — Identity of the customer performing checkout.

One AuthContext is populated at session start and passed explicitly into the
payment initiator and the finalization workflow.
"""

from dataclasses import dataclass
from typing import Dict, Optional

from .errors import AuthError


@dataclass
class AuthContext:
    user_id: Optional[str] = None
    token: Optional[str] = None

    @classmethod
    def from_headers(cls, authorization: Optional[str], user_id: Optional[str]) -> "AuthContext":
        """Reads a `Bearer <token>` Authorization header and the user id header."""
        token = None
        if authorization and authorization.lower().startswith("bearer "):
            token = authorization[7:].strip() or None
        return cls(user_id=user_id or None, token=token)

    @property
    def is_authenticated(self) -> bool:
        return bool(self.user_id and self.token)

    def require(self):
        """
        Raises:
            AuthError: When the user id or token is missing.
        """
        if not self.user_id:
            raise AuthError("User ID is missing. Please login again.")
        if not self.token:
            raise AuthError("Authentication token is missing. Please login again.")

    def headers(self) -> Dict[str, str]:
        if not self.token:
            return {}
        return {"Authorization": f"Bearer {self.token}"}

    def invalidate(self):
        """Discards the cached token after the API answered 401."""
        self.token = None
