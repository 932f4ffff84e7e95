import logging
import uuid
from dataclasses import dataclass
import requests

from proescrow.core.config import settings

logger = logging.getLogger(__name__)


@dataclass
class PaymentGatewayConfig:
    base_url: str           # e.g. https://payments.internal/api
    api_key: str            # bearer key
    timeout: int = 25


@dataclass
class CaptureResult:
    success: bool
    transaction_id: str = ""
    message: str = ""


@dataclass
class RefundResult:
    success: bool
    message: str = ""


class CaptureError(RuntimeError):
    pass


class GatewayRefundError(RuntimeError):
    pass


class PaymentGatewayClient:
    """REST client for the card/bank rails. Timeouts count as failures; the caller retries."""

    def __init__(self, cfg: PaymentGatewayConfig):
        self.cfg = cfg

    def _headers(self, idempotency_key: str) -> dict:
        return {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Authorization": f"Bearer {self.cfg.api_key}",
            "Idempotency-Key": idempotency_key,
        }

    def request(self, method: str, path: str, payload: dict, idempotency_key: str) -> dict:
        url = f"{self.cfg.base_url.rstrip('/')}{path}"
        r = requests.request(
            method=method.upper(),
            url=url,
            json=payload,
            headers=self._headers(idempotency_key),
            timeout=self.cfg.timeout,
        )
        try:
            data = r.json() if r.text else {}
        except ValueError:
            data = {"raw": r.text}
        if r.status_code >= 400:
            raise RuntimeError(f"gateway {r.status_code}: {data}")
        return data

    def capture(self, amount: int, payment_method_ref: str, reference: str = "") -> CaptureResult:
        payload = {
            "amount": int(amount),
            "paymentMethodRef": payment_method_ref,
            "reference": reference,
        }
        try:
            data = self.request("POST", "/captures", payload, idempotency_key=f"capture-{reference}-{amount}")
        except (requests.RequestException, RuntimeError) as e:
            raise CaptureError(str(e)) from e
        if not data.get("success"):
            raise CaptureError(data.get("message") or "capture declined")
        return CaptureResult(success=True, transaction_id=str(data.get("transactionId") or ""))

    def refund(self, transaction_id: str, amount: int) -> RefundResult:
        payload = {"amount": int(amount)}
        try:
            data = self.request("POST", f"/captures/{transaction_id}/refunds", payload, idempotency_key=f"refund-{transaction_id}-{amount}")
        except (requests.RequestException, RuntimeError) as e:
            raise GatewayRefundError(str(e)) from e
        if not data.get("success"):
            raise GatewayRefundError(data.get("message") or "refund declined")
        return RefundResult(success=True)


class SandboxPaymentGateway:
    """Synthetic successes for local development (PAYMENT_GATEWAY_SANDBOX=true)."""

    def capture(self, amount: int, payment_method_ref: str, reference: str = "") -> CaptureResult:
        tx = f"sandbox-{uuid.uuid4().hex[:16]}"
        logger.info("sandbox capture %s amount=%s ref=%s", tx, amount, reference)
        return CaptureResult(success=True, transaction_id=tx)

    def refund(self, transaction_id: str, amount: int) -> RefundResult:
        logger.info("sandbox refund %s amount=%s", transaction_id, amount)
        return RefundResult(success=True)


def get_payment_gateway():
    if settings.PAYMENT_GATEWAY_SANDBOX:
        return SandboxPaymentGateway()
    if not (settings.PAYMENT_GATEWAY_URL and settings.PAYMENT_GATEWAY_API_KEY):
        raise RuntimeError("Payment gateway is not configured (missing env vars)")
    return PaymentGatewayClient(PaymentGatewayConfig(
        base_url=settings.PAYMENT_GATEWAY_URL,
        api_key=settings.PAYMENT_GATEWAY_API_KEY,
        timeout=settings.PAYMENT_GATEWAY_TIMEOUT,
    ))
