"""
JWT credentials for the App Store Connect API.
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

import jwt

from .exceptions import AuthenticationError, ConfigurationError

logger = logging.getLogger(__name__)

AUDIENCE = "appstoreconnect-v1"
# Apple rejects tokens that live longer than 20 minutes
TOKEN_LIFETIME = 20 * 60
# Reissue one minute before expiry
TOKEN_CACHE_SECONDS = 19 * 60


class TokenProvider:
    """
    Signs and caches ES256 bearer tokens.

    Args:
        key_id: Your App Store Connect API key ID
        issuer_id: Your App Store Connect API issuer ID
        private_key_path: Path to your .p8 private key file
    """

    def __init__(self, key_id: str, issuer_id: str, private_key_path: Union[str, Path]):
        if not all([key_id, issuer_id, private_key_path]):
            raise ConfigurationError(
                "Missing required auth config: key_id, issuer_id and private_key_path are required"
            )

        self.key_id = key_id
        self.issuer_id = issuer_id
        self.private_key_path = Path(private_key_path)
        self._token: Optional[str] = None
        self._token_expiry: Optional[int] = None

        if not self.private_key_path.exists():
            raise ConfigurationError(f"Private key file not found: {private_key_path}")

    def _load_private_key(self) -> str:
        """Load the private key from file."""
        try:
            with open(self.private_key_path, "r") as f:
                key_content = f.read()
        except IOError as e:
            raise AuthenticationError(f"Failed to load private key: {e}")

        if "BEGIN PRIVATE KEY" not in key_content or "END PRIVATE KEY" not in key_content:
            raise AuthenticationError(
                "Invalid P8 key format. Must include BEGIN/END PRIVATE KEY markers"
            )
        return key_content

    def get_token(self) -> str:
        """Return a valid token, reusing the cached one when possible."""
        current_time = int(datetime.now(timezone.utc).timestamp())

        if self._token and self._token_expiry and current_time < self._token_expiry:
            return self._token

        private_key = self._load_private_key()

        payload = {
            "iss": self.issuer_id,
            "iat": current_time,
            "exp": current_time + TOKEN_LIFETIME,
            "aud": AUDIENCE,
        }
        headers = {"alg": "ES256", "kid": self.key_id, "typ": "JWT"}

        try:
            token = jwt.encode(payload, private_key, algorithm="ES256", headers=headers)
        except Exception as e:
            raise AuthenticationError(f"Failed to generate JWT token: {e}")

        # PyJWT < 2 returns bytes
        if isinstance(token, bytes):
            token = token.decode("utf-8")

        self._token = token
        self._token_expiry = current_time + TOKEN_CACHE_SECONDS
        logger.debug("get_token: issued new token")
        return token

    def clear_cache(self) -> None:
        """Drop the cached token so the next call signs a fresh one."""
        self._token = None
        self._token_expiry = None

    def validate(self) -> bool:
        """Check that a token can be generated and carries the expected claims."""
        try:
            token = self.get_token()
            decoded = jwt.decode(token, options={"verify_signature": False})
        except (AuthenticationError, jwt.PyJWTError) as e:
            logger.warning(f"validate: token check failed: {e}")
            return False

        return decoded.get("iss") == self.issuer_id and decoded.get("aud") == AUDIENCE
