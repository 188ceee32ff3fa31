"""Notifier that records deliveries and logs them instead of sending email.

Used in development and tests. The token itself is never logged; only its
masked id and expiry.
"""

from dataclasses import dataclass
from typing import List, Optional

from structlog import get_logger

from tokenward.domain.entities.identity import Identity
from tokenward.domain.interfaces.services import INotifier
from tokenward.domain.value_objects.token_claims import OneShotPurpose
from tokenward.domain.value_objects.token_id import mask
from tokenward.domain.value_objects.tokens import IssuedToken

logger = get_logger(__name__)


@dataclass(frozen=True)
class Delivery:
    purpose: OneShotPurpose
    subject_id: str
    email: str
    token: str


class LoggingNotifier(INotifier):
    def __init__(self):
        self.deliveries: List[Delivery] = []

    async def send_password_reset(self, identity: Identity, token: IssuedToken) -> None:
        self._deliver(OneShotPurpose.RESET, identity, token)

    async def send_email_verification(self, identity: Identity, token: IssuedToken) -> None:
        self._deliver(OneShotPurpose.VERIFY, identity, token)

    def last_token(self, purpose: OneShotPurpose, subject_id: Optional[str] = None) -> Optional[str]:
        """The most recently delivered token for ``purpose`` (and subject, if given)."""
        for delivery in reversed(self.deliveries):
            if delivery.purpose is purpose and subject_id in (None, delivery.subject_id):
                return delivery.token
        return None

    def _deliver(self, purpose: OneShotPurpose, identity: Identity, token: IssuedToken) -> None:
        self.deliveries.append(
            Delivery(purpose=purpose, subject_id=identity.id, email=identity.email, token=token.token)
        )
        logger.info(
            "One-shot token delivered",
            purpose=purpose.value,
            subject_id=identity.id,
            jti=mask(token.claims.token_id),
            expires_at=token.expires_at.isoformat(),
        )
