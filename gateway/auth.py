"""
Authentication module - bearer API tokens mapped to user identities
"""
import hmac
import logging
from typing import Dict, Optional, Set

logger = logging.getLogger(__name__)


class Auth:
    """Resolve a bearer token to the user id it was issued to.

    Every configured token is compared on each lookup, so the time taken does
    not reveal which (if any) user a guess came close to.
    """

    def __init__(self, api_tokens: Optional[Dict[str, str]] = None):
        """
        Args:
            api_tokens: Mapping of user id -> API token.
        """
        self._tokens: Dict[str, bytes] = {}
        for user_id, token in (api_tokens or {}).items():
            token = str(token or "")
            if not token:
                continue
            self._tokens[str(user_id)] = token.encode("utf-8")
        logger.info("Auth initialized: %d API token(s)", len(self._tokens))

    @property
    def users(self) -> Set[str]:
        return set(self._tokens)

    def resolve(self, token: Optional[str]) -> Optional[str]:
        if not token:
            return None
        candidate = str(token).encode("utf-8")
        matched = None
        for user_id, expected in self._tokens.items():
            if hmac.compare_digest(candidate, expected) and matched is None:
                matched = user_id
        return matched

    @staticmethod
    def bearer_token(header_value: Optional[str]) -> Optional[str]:
        """Extract the token from an ``Authorization: Bearer <token>`` header."""
        parts = str(header_value or "").strip().split(None, 1)
        if len(parts) != 2 or parts[0].lower() != "bearer":
            return None
        return parts[1].strip() or None
