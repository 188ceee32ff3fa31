import re

from tokenward.core.exceptions import PasswordPolicyError
from tokenward.utils.i18n import get_translated_message


class PasswordPolicyValidator:
    """Validates passwords against a defined security policy.

    The policy requires a minimum length and, optionally, a mix of uppercase
    letters, lowercase letters, numbers and special characters.
    """

    def __init__(
        self,
        min_length: int = 8,
        require_uppercase: bool = True,
        require_lowercase: bool = True,
        require_digit: bool = True,
        require_special_char: bool = True,
    ):
        self.min_length = min_length
        self.require_uppercase = require_uppercase
        self.require_lowercase = require_lowercase
        self.require_digit = require_digit
        self.require_special_char = require_special_char

    @classmethod
    def from_settings(cls, settings) -> "PasswordPolicyValidator":
        return cls(
            min_length=settings.PASSWORD_MIN_LENGTH,
            require_uppercase=settings.PASSWORD_REQUIRE_UPPERCASE,
            require_lowercase=settings.PASSWORD_REQUIRE_LOWERCASE,
            require_digit=settings.PASSWORD_REQUIRE_DIGIT,
            require_special_char=settings.PASSWORD_REQUIRE_SPECIAL_CHAR,
        )

    def validate(self, password: str, language: str = "en") -> None:
        """Validates the given password against the policy.

        Raises:
            PasswordPolicyError: If the password does not meet the policy requirements.

        """
        if len(password) < self.min_length:
            raise PasswordPolicyError(
                get_translated_message("password_too_short", language, length=self.min_length)
            )

        if self.require_uppercase and not re.search(r"[A-Z]", password):
            raise PasswordPolicyError(get_translated_message("password_no_uppercase", language))

        if self.require_lowercase and not re.search(r"[a-z]", password):
            raise PasswordPolicyError(get_translated_message("password_no_lowercase", language))

        if self.require_digit and not re.search(r"\d", password):
            raise PasswordPolicyError(get_translated_message("password_no_digit", language))

        if self.require_special_char and not re.search(r"[!@#$%^&*(),.?:{}|<>_=\-+\[\];'/\\~`\"]", password):
            raise PasswordPolicyError(get_translated_message("password_no_special_char", language))
