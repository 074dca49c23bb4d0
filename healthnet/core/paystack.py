# healthnet/core/paystack.py
import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timezone
from typing import Any

import httpx
from pydantic import ConfigDict
from sqlmodel import SQLModel

from healthnet.core.config import get_settings
from healthnet.core.exceptions import GatewayError, GatewayRejected

logger = logging.getLogger(__name__)


class AuthorizationResult(SQLModel):
    """Checkout handle returned by transaction/initialize."""

    checkout_url: str
    access_code: str | None = None
    reference: str


class GatewayAuthorization(SQLModel):
    model_config = ConfigDict(extra="ignore")

    authorization_code: str | None = None
    last4: str | None = None
    exp_month: str | None = None
    exp_year: str | None = None
    card_type: str | None = None
    bank: str | None = None


class GatewayTransaction(SQLModel):
    """
    Gateway view of one transaction.

    Built either from transaction/verify or from the `data` block of a
    signed webhook event; both share the same shape. Amounts stay in
    minor units here.
    """

    model_config = ConfigDict(extra="ignore")

    reference: str
    status: str
    amount: int | None = None
    currency: str | None = None
    channel: str | None = None
    gateway_response: str | None = None
    fees: int | None = None
    paid_at: str | None = None
    gateway_metadata: dict[str, Any] | None = None
    authorization: GatewayAuthorization | None = None
    raw: dict[str, Any] = {}

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "GatewayTransaction":
        metadata = data.get("metadata")
        authorization = data.get("authorization") or None
        return cls(
            reference=str(data.get("reference") or ""),
            status=str(data.get("status") or ""),
            amount=data.get("amount"),
            currency=data.get("currency"),
            channel=data.get("channel"),
            gateway_response=data.get("gateway_response"),
            fees=data.get("fees"),
            paid_at=data.get("paid_at") or data.get("paidAt"),
            # some integrations send metadata as a JSON string; dropped
            gateway_metadata=metadata if isinstance(metadata, dict) else None,
            authorization=GatewayAuthorization.model_validate(
                {k: None if v is None else str(v) for k, v in authorization.items()}
            )
            if isinstance(authorization, dict)
            else None,
            raw=data,
        )


class PaystackClient:
    """
    Thin sync wrapper over the Paystack REST API.

    Every failure mode (timeout, connection error, non-2xx, `status: false`)
    surfaces as GatewayError; explicit refusals use the GatewayRejected
    subclass so callers can tell "declined" from "unreachable".
    """

    def __init__(
        self,
        secret_key: str,
        base_url: str = "https://api.paystack.co",
        timeout: float = 15.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.secret_key = secret_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    # ----- helpers -----

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self.transport,
            headers={
                "Authorization": f"Bearer {self.secret_key}",
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
        )

    def _request(self, method: str, path: str, **kwargs) -> dict[str, Any]:
        try:
            with self._client() as client:
                response = client.request(method, path, **kwargs)
        except httpx.TimeoutException:
            logger.error("[Paystack] Timeout calling %s %s", method, path)
            raise GatewayError(
                "Payment gateway timed out",
                details={"path": path},
            )
        except httpx.RequestError as exc:
            logger.error("[Paystack] Connection error calling %s %s: %s", method, path, exc)
            raise GatewayError(
                "Could not reach payment gateway",
                details={"path": path},
            )

        try:
            body = response.json()
        except ValueError:
            preview = response.text[:200] if response.text else "(empty)"
            logger.error("[Paystack] Non-JSON response (HTTP %s): %s", response.status_code, preview)
            raise GatewayError(
                f"Payment gateway returned an invalid response (HTTP {response.status_code})",
                details={"path": path, "http_status": response.status_code},
            )

        message = body.get("message") if isinstance(body, dict) else None
        if response.status_code >= 500:
            raise GatewayError(
                message or "Payment gateway error",
                details={"path": path, "http_status": response.status_code},
            )
        if response.status_code >= 400 or not body.get("status"):
            raise GatewayRejected(
                message or "Payment gateway rejected the request",
                details={"path": path, "http_status": response.status_code},
            )

        return body.get("data") or {}

    # ----- API -----

    @staticmethod
    def generate_reference(prefix: str = "HN-PAY") -> str:
        """PREFIX-YYYYMMDDHHMMSS-XXXXXXXX, random part from secrets."""
        stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
        return f"{prefix}-{stamp}-{secrets.token_hex(4).upper()}"

    def create_authorization(
        self,
        *,
        email: str,
        amount_minor: int,
        reference: str,
        currency: str,
        metadata: dict[str, Any] | None = None,
        callback_url: str | None = None,
    ) -> AuthorizationResult:
        payload: dict[str, Any] = {
            "email": email,
            "amount": amount_minor,
            "reference": reference,
            "currency": currency,
            "metadata": metadata or {},
        }
        if callback_url:
            payload["callback_url"] = callback_url

        data = self._request("POST", "/transaction/initialize", json=payload)

        if not data.get("authorization_url"):
            raise GatewayRejected(
                "Payment gateway did not return an authorization URL",
                details={"reference": reference},
            )

        return AuthorizationResult(
            checkout_url=data["authorization_url"],
            access_code=data.get("access_code"),
            reference=data.get("reference") or reference,
        )

    def fetch_transaction(self, reference: str) -> GatewayTransaction:
        data = self._request("GET", f"/transaction/verify/{reference}")
        if not data.get("reference"):
            data = {**data, "reference": reference}
        return GatewayTransaction.from_payload(data)

    def verify_signature(self, raw_body: bytes, signature: str | None) -> bool:
        """HMAC-SHA512 of the raw body keyed with the secret key."""
        if not signature:
            return False
        expected = hmac.new(
            self.secret_key.encode("utf-8"),
            raw_body,
            hashlib.sha512,
        ).hexdigest()
        return hmac.compare_digest(expected, signature)


def get_payment_gateway() -> PaystackClient:
    """
    FastAPI dependency returning a client configured from settings.

    Tests override this with a client on an httpx.MockTransport.
    """
    settings = get_settings()
    return PaystackClient(
        secret_key=settings.PAYSTACK_SECRET_KEY,
        base_url=settings.PAYSTACK_BASE_URL,
        timeout=settings.PAYMENT_GATEWAY_TIMEOUT,
    )
