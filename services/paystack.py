import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict
from urllib.parse import quote

import requests

from core.config import settings
from core.exceptions import BadRequestError, GatewayUnavailableError

logger = logging.getLogger(__name__)

SUCCESS_STATUS = "success"


@dataclass(frozen=True)
class VerificationResult:
    reference: str
    status: str
    amount_minor: int = 0
    currency: str = settings.DEFAULT_CURRENCY
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status == SUCCESS_STATUS

    @property
    def amount(self) -> Decimal:
        # Paystack reports kobo/cents
        return (Decimal(self.amount_minor) / 100).quantize(Decimal("0.01"))


def _headers(secret_key: str) -> Dict[str, str]:
    return {
        "Authorization": f"Bearer {secret_key}",
        "Content-Type": "application/json",
    }


class PaystackClient:
    """Read-only view of Paystack's transaction records."""

    def __init__(self, secret_key: str | None = None, base_url: str | None = None, timeout: int | None = None):
        self.secret_key = secret_key if secret_key is not None else settings.PAYSTACK_SECRET_KEY
        self.base_url = (base_url or settings.PAYSTACK_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.PAYSTACK_TIMEOUT_SECONDS

    def verify(self, reference: str) -> VerificationResult:
        """Ask Paystack whether ``reference`` moved money.

        A declined, abandoned or unknown transaction comes back as a failed
        result. Only transport problems raise.
        """
        if not reference or not reference.strip():
            raise BadRequestError("Payment reference is required")

        try:
            resp = requests.get(
                f"{self.base_url}/transaction/verify/{quote(reference, safe='')}",
                headers=_headers(self.secret_key),
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.warning("Paystack verify failed for %s: %s", reference, exc)
            raise GatewayUnavailableError("Payment gateway unavailable", {"reference": reference}) from exc

        if not resp.ok:
            logger.info("Paystack verify for %s returned HTTP %s", reference, resp.status_code)
            return VerificationResult(reference=reference, status="failed")

        try:
            body = resp.json()
        except ValueError:
            logger.warning("Paystack verify for %s returned a non-JSON body", reference)
            return VerificationResult(reference=reference, status="failed")

        data = body.get("data") or {}
        if not body.get("status") or not isinstance(data, dict):
            return VerificationResult(reference=reference, status="failed")

        # The transaction Paystack answered for must be the one asked about
        if data.get("reference") != reference:
            logger.warning("Paystack verify for %s answered for %r", reference, data.get("reference"))
            return VerificationResult(reference=reference, status="failed")

        return VerificationResult(
            reference=reference,
            status=data.get("status") or "failed",
            amount_minor=int(data.get("amount") or 0),
            currency=data.get("currency") or settings.DEFAULT_CURRENCY,
            metadata=data.get("metadata") if isinstance(data.get("metadata"), dict) else {},
        )
