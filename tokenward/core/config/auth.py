"""Authentication and token lifecycle settings.
"""

import logging
from pathlib import Path

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

SYMMETRIC_ALGORITHMS = ("HS256", "HS384", "HS512")
ASYMMETRIC_ALGORITHMS = ("RS256", "RS384", "RS512", "ES256", "ES384")


class AuthSettings(BaseSettings):
    """Defines settings for token signing, token lifetimes and password rules.

    Symmetric algorithms (HS*) sign with ``JWT_SECRET_KEY``. Asymmetric ones
    (RS*/ES*) sign with ``JWT_PRIVATE_KEY`` and verify with ``JWT_PUBLIC_KEY``;
    both may be loaded from ``private.pem``/``public.pem`` in the working
    directory, which override the environment.

    Security Note:
        - Signing keys must never be logged or committed to version control.
        - Rotate keys by deploying the new public key to verifiers first.
    """

    # JWT settings
    JWT_ALGORITHM: str = "HS256"
    JWT_SECRET_KEY: SecretStr = SecretStr("")
    JWT_PRIVATE_KEY: SecretStr = SecretStr("")
    JWT_PUBLIC_KEY: str = ""
    JWT_ISSUER: str = "https://auth.example.com"
    JWT_AUDIENCE: str = "tokenward:api"

    # Lifetimes
    ACCESS_TOKEN_EXPIRE_MINUTES: int = Field(default=15, ge=1)
    REFRESH_TOKEN_EXPIRE_DAYS: int = Field(default=7, ge=1)
    PASSWORD_RESET_TOKEN_EXPIRE_MINUTES: int = Field(default=30, ge=1)
    EMAIL_VERIFICATION_TOKEN_EXPIRE_HOURS: int = Field(default=24, ge=1)

    # Password policy
    PASSWORD_POLICY_ENABLED: bool = True
    PASSWORD_MIN_LENGTH: int = Field(default=8, ge=1)
    PASSWORD_REQUIRE_UPPERCASE: bool = True
    PASSWORD_REQUIRE_LOWERCASE: bool = True
    PASSWORD_REQUIRE_DIGIT: bool = True
    PASSWORD_REQUIRE_SPECIAL_CHAR: bool = True
    BCRYPT_WORK_FACTOR: int = Field(default=12, ge=4, le=31)

    # Attempt limits for login and one-shot token requests
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_ATTEMPTS: int = Field(default=5, ge=1)
    RATE_LIMIT_WINDOW_SECONDS: float = Field(default=60.0, gt=0)

    @model_validator(mode="after")
    def _load_and_validate_jwt_keys(self) -> "AuthSettings":
        """Loads PEM keys when present and checks the key material matches the algorithm.

        Returns:
            Self instance with loaded keys.

        Raises:
            ValueError: If the algorithm is unsupported or its keys are missing.

        """
        algorithm = self.JWT_ALGORITHM.upper()
        if algorithm not in SYMMETRIC_ALGORITHMS + ASYMMETRIC_ALGORITHMS:
            raise ValueError(f"Unsupported JWT_ALGORITHM: {self.JWT_ALGORITHM}")
        self.JWT_ALGORITHM = algorithm

        if algorithm in SYMMETRIC_ALGORITHMS:
            if not self.JWT_SECRET_KEY.get_secret_value():
                error_msg = f"JWT_SECRET_KEY must be set when JWT_ALGORITHM is {algorithm}."
                logger.error(error_msg)
                raise ValueError(error_msg)
            return self

        self._load_keys_from_pem_files()
        if not self.JWT_PRIVATE_KEY.get_secret_value() or not self.JWT_PUBLIC_KEY:
            error_msg = (
                "JWT keys not found. Please provide JWT_PRIVATE_KEY and JWT_PUBLIC_KEY "
                "either via .env variables or through private.pem/public.pem files."
            )
            logger.error(error_msg)
            raise ValueError(error_msg)

        logger.info("JWT keys validated successfully.")
        return self

    def _load_keys_from_pem_files(self) -> None:
        """Loads JWT keys from private.pem and public.pem if they exist."""
        private_key_path = Path("private.pem").resolve()
        public_key_path = Path("public.pem").resolve()

        if private_key_path.is_file():
            try:
                private_key = private_key_path.read_text().strip()
            except OSError as e:
                logger.error(f"Failed to read private.pem: {e!s}")
            else:
                if private_key:
                    self.JWT_PRIVATE_KEY = SecretStr(private_key)
                    logger.info("Loaded JWT private key from private.pem.")

        if public_key_path.is_file():
            try:
                public_key = public_key_path.read_text().strip()
            except OSError as e:
                logger.error(f"Failed to read public.pem: {e!s}")
            else:
                if public_key:
                    self.JWT_PUBLIC_KEY = public_key
                    logger.info("Loaded JWT public key from public.pem.")

    @property
    def signing_key(self) -> str:
        """Key used to sign tokens for the configured algorithm."""
        if self.JWT_ALGORITHM in SYMMETRIC_ALGORITHMS:
            return self.JWT_SECRET_KEY.get_secret_value()
        return self.JWT_PRIVATE_KEY.get_secret_value()

    @property
    def verification_key(self) -> str:
        """Key used to verify token signatures for the configured algorithm."""
        if self.JWT_ALGORITHM in SYMMETRIC_ALGORITHMS:
            return self.JWT_SECRET_KEY.get_secret_value()
        return self.JWT_PUBLIC_KEY
