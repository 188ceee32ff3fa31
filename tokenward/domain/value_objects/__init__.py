from .token_claims import OneShotPurpose, TokenClaims, TokenKind
from .token_id import TokenId
from .tokens import AuthResult, IssuedToken, TokenPair

__all__ = [
    "AuthResult",
    "IssuedToken",
    "OneShotPurpose",
    "TokenClaims",
    "TokenId",
    "TokenKind",
    "TokenPair",
]
