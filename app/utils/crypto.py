from cryptography.fernet import Fernet, InvalidToken

from app.exceptions import ConfigurationError


class TokenCipher:
    """Symmetric encryption for OAuth credentials at rest."""

    def __init__(self, key: str | None) -> None:
        if not key:
            raise ConfigurationError("TOKEN_ENCRYPTION_KEY is not configured")
        try:
            self._fernet = Fernet(key.encode())
        except ValueError as e:
            raise ConfigurationError(f"TOKEN_ENCRYPTION_KEY is not a valid Fernet key: {e}") from e

    def encrypt(self, value: str) -> str:
        """Encrypt a credential"""
        return self._fernet.encrypt(value.encode()).decode()

    def decrypt(self, value: str) -> str:
        """Decrypt a credential"""
        try:
            return self._fernet.decrypt(value.encode()).decode()
        except InvalidToken as e:
            raise ConfigurationError("Stored credential cannot be decrypted with the configured key") from e
