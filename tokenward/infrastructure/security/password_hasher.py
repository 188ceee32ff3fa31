"""Password hashing backed by passlib.

Uses bcrypt through a passlib ``CryptContext``. ``deprecated="auto"`` and the
minimum work factor let ``needs_rehash`` flag hashes produced with an older
scheme or a weaker work factor.
"""

from passlib.context import CryptContext

from tokenward.domain.interfaces.services import IPasswordHasher

DEFAULT_BCRYPT_ROUNDS = 12


class PasslibPasswordHasher(IPasswordHasher):
    """bcrypt password hasher.

    Args:
        rounds: bcrypt work factor. Tests pass the minimum (4) to stay fast.
        schemes: passlib scheme names, preferred scheme first.
    """

    def __init__(self, rounds: int = DEFAULT_BCRYPT_ROUNDS, schemes: tuple = ("bcrypt",)):
        options = {"bcrypt__rounds": rounds, "bcrypt__min_rounds": rounds} if "bcrypt" in schemes else {}
        self.context = CryptContext(schemes=list(schemes), deprecated="auto", **options)

    @classmethod
    def from_settings(cls, settings) -> "PasslibPasswordHasher":
        return cls(rounds=settings.BCRYPT_WORK_FACTOR)

    def hash(self, password: str) -> str:
        return self.context.hash(password)

    def verify(self, password: str, hashed_password: str) -> bool:
        """Constant-time comparison; malformed hashes count as a mismatch."""
        try:
            return self.context.verify(password, hashed_password)
        except ValueError:
            return False

    def needs_rehash(self, hashed_password: str) -> bool:
        return self.context.needs_update(hashed_password)
