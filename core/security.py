"""
Field-level encryption for PII and stored credentials (Fernet)
"""

import json
import logging
from typing import Any, Optional

from cryptography.fernet import Fernet, InvalidToken

from core.config import settings
from core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class FieldEncryptor:
    """
    Symmetric encryption of individual column values.

    The transformer only ever sees ``encrypt``; decryption is reserved for
    the credential repository and operator tooling.
    """

    def __init__(self, key: Optional[str] = None):
        key = key or settings.ENCRYPTION_KEY
        if not key:
            if settings.ENVIRONMENT in ("development", "test"):
                key = Fernet.generate_key().decode()
                logger.warning(
                    "ENCRYPTION_KEY not set, using an ephemeral key. "
                    "Encrypted values will not survive a restart."
                )
            else:
                raise ConfigurationError(
                    "ENCRYPTION_KEY must be set outside development",
                    context={"environment": settings.ENVIRONMENT}
                )
        try:
            self._fernet = Fernet(key.encode() if isinstance(key, str) else key)
        except (ValueError, TypeError) as e:
            raise ConfigurationError(
                "ENCRYPTION_KEY is not a valid Fernet key",
                original_exception=e
            )

    def encrypt(self, value: Optional[str]) -> Optional[str]:
        """Encrypt a string value. None and empty strings pass through."""
        if value is None or value == "":
            return value
        return self._fernet.encrypt(str(value).encode("utf-8")).decode("ascii")

    def decrypt(self, token: Optional[str]) -> Optional[str]:
        if token is None or token == "":
            return token
        try:
            return self._fernet.decrypt(token.encode("ascii")).decode("utf-8")
        except InvalidToken as e:
            raise ConfigurationError(
                "Unable to decrypt value with the configured key",
                original_exception=e
            )

    def encrypt_json(self, value: Any) -> Optional[str]:
        """Encrypt a JSON-serialisable structure (addresses, ...)."""
        if value is None:
            return None
        return self.encrypt(json.dumps(value, sort_keys=True, default=str))

    def decrypt_json(self, token: Optional[str]) -> Any:
        plain = self.decrypt(token)
        return json.loads(plain) if plain else None
