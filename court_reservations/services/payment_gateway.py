import base64
import hashlib
import hmac
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import format_datetime
from urllib.parse import urlparse
import json
import requests

from court_reservations.core.config import settings

@dataclass
class GatewayConfig:
    base_url: str           # e.g. https://api.payments.example.com
    merchant_id: str        # x-merchant-id header
    secret_key_b64: str     # shared secret (base64) used to sign requests
    timeout: int = 25
    sandbox: bool = False

@dataclass
class PaymentResult:
    success: bool
    transaction_ref: str = ""
    status: str = ""

class GatewayError(RuntimeError):
    """Transport or protocol failure talking to the gateway (not a decline)."""
    pass

_DECLINED = ("DECLINED", "REJECTED", "FAILED")

def _sha256_digest_b64(body_bytes: bytes) -> str:
    digest = hashlib.sha256(body_bytes).digest()
    return base64.b64encode(digest).decode("utf-8")

def _hmac_sha256_b64(secret_key: bytes, msg: str) -> str:
    sig = hmac.new(secret_key, msg.encode("utf-8"), hashlib.sha256).digest()
    return base64.b64encode(sig).decode("utf-8")

def _signing_string(method: str, resource: str, host: str, date_str: str, digest_header: str, merchant_id: str) -> str:
    # newline separated, no trailing newline
    lines = [
        f"host: {host}",
        f"date: {date_str}",
        f"(request-target): {method.lower()} {resource}",
        f"digest: {digest_header}",
        f"x-merchant-id: {merchant_id}",
    ]
    return "\n".join(lines)

class PaymentGateway:
    """Payment collaborator. The booking core only looks at success/failure and the transaction ref."""

    def __init__(self, cfg: GatewayConfig):
        self.cfg = cfg
        b64 = (cfg.secret_key_b64 or "").strip().replace("\r", "").replace("\n", "").replace(" ", "")
        self._secret = base64.b64decode(b64) if b64 else b""

    def _headers(self, method: str, resource: str, body_bytes: bytes) -> dict:
        host = urlparse(self.cfg.base_url).netloc
        date_str = format_datetime(datetime.now(timezone.utc), usegmt=True)
        digest_header = f"SHA-256={_sha256_digest_b64(body_bytes)}"
        signature_b64 = _hmac_sha256_b64(
            self._secret, _signing_string(method, resource, host, date_str, digest_header, self.cfg.merchant_id)
        )
        return {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Date": date_str,
            "Digest": digest_header,
            "x-merchant-id": self.cfg.merchant_id,
            "Signature": (
                f'keyid="{self.cfg.merchant_id}", algorithm="HmacSHA256", '
                f'headers="host date (request-target) digest x-merchant-id", signature="{signature_b64}"'
            ),
        }

    def request(self, method: str, path: str, payload: dict | None = None) -> dict:
        payload = payload or {}
        body_bytes = json.dumps(payload, separators=(",", ":")).encode("utf-8")
        url = f"{self.cfg.base_url.rstrip('/')}{path}"
        try:
            r = requests.request(method=method.upper(), url=url, data=body_bytes,
                                 headers=self._headers(method, path, body_bytes), timeout=self.cfg.timeout)
        except requests.RequestException as e:
            raise GatewayError(f"Payment gateway unreachable: {e}") from e
        try:
            data = r.json() if r.text else {}
        except ValueError:
            data = {"raw": r.text}
        if r.status_code >= 500:
            raise GatewayError(f"Payment gateway {r.status_code}: {data}")
        if r.status_code >= 400:
            # 4xx carries a decline/validation body; report it as a declined result
            data.setdefault("status", "DECLINED")
        return data

    def charge(self, *, amount: int, payer: dict, client_ref: str) -> PaymentResult:
        if self.cfg.sandbox:
            return PaymentResult(success=True, transaction_ref=f"sandbox-{client_ref}", status="PROCESSED")
        resp = self.request("POST", "/v1/payments", {
            "clientReference": client_ref,
            "amount": int(amount),
            "payer": payer,
        })
        status = str(resp.get("status") or "").upper()
        return PaymentResult(success=status not in _DECLINED and bool(status),
                             transaction_ref=str(resp.get("id") or ""), status=status)

    def refund(self, *, transaction_ref: str, amount: int, client_ref: str) -> PaymentResult:
        """Refund a processed charge. client_ref is stable per booking so the gateway dedupes retries."""
        if self.cfg.sandbox:
            return PaymentResult(success=True, transaction_ref=f"sandbox-{client_ref}", status="REFUNDED")
        resp = self.request("POST", f"/v1/payments/{transaction_ref}/refunds", {
            "clientReference": client_ref,
            "amount": int(amount),
        })
        status = str(resp.get("status") or "").upper()
        return PaymentResult(success=status not in _DECLINED and bool(status),
                             transaction_ref=str(resp.get("id") or ""), status=status)


def get_payment_gateway() -> PaymentGateway:
    return PaymentGateway(GatewayConfig(
        base_url=settings.PAYMENT_GATEWAY_URL,
        merchant_id=settings.PAYMENT_MERCHANT_ID,
        secret_key_b64=settings.PAYMENT_SECRET_KEY_B64,
        timeout=settings.PAYMENT_TIMEOUT_SECONDS,
        sandbox=settings.PAYMENT_SANDBOX,
    ))
