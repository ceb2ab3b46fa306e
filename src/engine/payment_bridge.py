"""
Payment bridge.

Mints the one-time payment artifact that follows an ACCEPT decision and
handles the customer side of it:
- auth code: short, human-presentable, drawn from an unambiguous alphabet
- capability token: random URL-safe secret embedded in the QR payload
- consume(): exactly-once, compare-and-swap in the store
- resolve(): customer-safe status view from a capability token

The bridge never talks to a payment provider. Externally obtained payment
links are stored verbatim.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Optional
from urllib.parse import urlencode

from src.engine.errors import FieldValidationError, NotFound
from src.integrations.contracts.interfaces import ConsumeOutcome, PaymentArtifact, ProposalStore
from src.integrations.contracts.underwriting import PaymentStatusView
from src.utils.config_loader import ArtifactConfig
from src.utils.money import quantize_money

logger = logging.getLogger(__name__)
security_logger = logging.getLogger("src.security")


def normalize_auth_code(auth_code: Optional[str]) -> str:
    return "".join((auth_code or "").split()).upper()


class PaymentBridge:
    def __init__(
        self,
        store: ProposalStore,
        config: Optional[ArtifactConfig] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ) -> None:
        self.store = store
        self.config = config or ArtifactConfig()
        self.clock = clock

    # ------------------------------------------------------------------
    # Minting
    # ------------------------------------------------------------------

    def generate_auth_code(self) -> str:
        alphabet = self.config.auth_code_alphabet
        return "".join(secrets.choice(alphabet) for _ in range(self.config.auth_code_length))

    def build_qr_payload(self, proposal_id: str, capability_token: str) -> str:
        base = self.config.customer_base_url
        separator = "&" if "?" in base else "?"
        return f"{base}{separator}{urlencode({'pid': proposal_id, 'token': capability_token})}"

    def mint(self, proposal_id: str, amount: Decimal, payment_link: Optional[str] = None) -> PaymentArtifact:
        """Build a fresh, unpersisted artifact. The state machine persists it with the decision."""
        now = self.clock()
        token = secrets.token_urlsafe(self.config.token_bytes)
        artifact = PaymentArtifact(
            proposal_id=proposal_id,
            auth_code=self.generate_auth_code(),
            capability_token=token,
            qr_payload=self.build_qr_payload(proposal_id, token),
            amount=quantize_money(amount),
            issued_at=now,
            expires_at=now + timedelta(hours=self.config.ttl_hours),
            payment_link=payment_link or None,
        )
        logger.debug("Minted payment artifact %s for proposal %s", artifact.artifact_id, proposal_id)
        return artifact

    # ------------------------------------------------------------------
    # Customer side
    # ------------------------------------------------------------------

    def consume(self, auth_code: str) -> ConsumeOutcome:
        code = normalize_auth_code(auth_code)
        if not code:
            return ConsumeOutcome.NOT_FOUND
        outcome = self.store.consume_artifact(code, self.clock())
        if outcome not in (ConsumeOutcome.OK, ConsumeOutcome.NOT_FOUND):
            security_logger.warning("Rejected payment artifact reuse: code=%s outcome=%s", code, outcome.value)
        elif outcome == ConsumeOutcome.OK:
            logger.info("Payment artifact consumed: code=%s", code)
        return outcome

    def resolve(self, capability_token: str) -> PaymentStatusView:
        artifact = self.store.find_artifact_by_token((capability_token or "").strip())
        if artifact is None:
            security_logger.warning("Unknown capability token presented")
            raise NotFound("payment_token", "***")
        proposal = self.store.get_proposal(artifact.proposal_id)
        if proposal is None:
            raise NotFound("proposal", artifact.proposal_id)

        decision = proposal.decision
        now = self.clock()
        return PaymentStatusView(
            proposal_id=proposal.proposal_id,
            status=proposal.status,
            amount=artifact.amount,
            payment_link=artifact.payment_link or proposal.payment_link,
            consumed=artifact.consumed_at is not None,
            invalidated=artifact.invalidated_at is not None,
            expired=now >= artifact.expires_at,
            policy_no=proposal.policy_no,
            policy_effective_date=decision.policy_effective_date if decision else None,
            policy_expiry_date=decision.policy_expiry_date if decision else None,
        )

    def attach_payment_link(self, proposal_id: str, payment_link: str):
        link = (payment_link or "").strip()
        if not link:
            raise FieldValidationError({"payment_link": "Payment link is required"})
        proposal = self.store.set_payment_link(proposal_id, link)
        logger.info("Payment link attached to proposal %s", proposal_id)
        return proposal
