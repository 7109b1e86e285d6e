import logging
from abc import ABC, abstractmethod
from decimal import Decimal, InvalidOperation
from typing import List, Optional

import httpx
from pydantic import BaseModel

from orderflow.core.config import settings
from orderflow.core.errors import ExternalDependencyError
from orderflow.domain import PaymentInfo, PreferenceResult

logger = logging.getLogger(__name__)


class ManifestItem(BaseModel):
    title: str
    quantity: int
    unit_price: Decimal
    currency_id: str


class Payer(BaseModel):
    name: str
    email: Optional[str] = None
    phone: str = ""


class BackUrls(BaseModel):
    success: str
    failure: str
    pending: str


class PreferenceManifest(BaseModel):
    external_reference: str
    items: List[ManifestItem]
    payer: Payer
    back_urls: BackUrls
    statement_descriptor: Optional[str] = None
    binary_mode: bool = True
    notification_url: Optional[str] = None

    def to_payload(self) -> dict:
        payload = {
            "external_reference": self.external_reference,
            "items": [
                {
                    "title": it.title,
                    "quantity": it.quantity,
                    "currency_id": it.currency_id,
                    "unit_price": float(it.unit_price),
                }
                for it in self.items
            ],
            "payer": {
                "name": self.payer.name,
                "email": self.payer.email,
                "phone": {"area_code": "", "number": self.payer.phone},
            },
            "back_urls": self.back_urls.model_dump(),
            "binary_mode": self.binary_mode,
        }
        if self.statement_descriptor:
            payload["statement_descriptor"] = self.statement_descriptor
        if self.notification_url:
            payload["notification_url"] = self.notification_url
        return payload


class PaymentGateway(ABC):

    @abstractmethod
    def create_preference(self, manifest: PreferenceManifest) -> PreferenceResult: ...

    @abstractmethod
    def get_payment(self, payment_id: str) -> PaymentInfo: ...


class HttpxPaymentGateway(PaymentGateway):
    """Mercado Pago REST client (checkout preferences + payments lookup)."""

    def __init__(self, base_url: str, access_token: str, timeout: float = 10.0, transport=None):
        self._base_url = base_url.rstrip("/")
        self._access_token = access_token
        self._timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls) -> "HttpxPaymentGateway":
        return cls(settings.GATEWAY_BASE_URL, settings.GATEWAY_ACCESS_TOKEN, settings.GATEWAY_TIMEOUT_SECONDS)

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self._base_url,
            timeout=self._timeout,
            headers={"Authorization": f"Bearer {self._access_token}"},
            transport=self._transport,
        )

    def _request(self, method: str, path: str, **kwargs) -> dict:
        if not self._access_token:
            raise ExternalDependencyError("Payment gateway access token is not configured")
        try:
            with self._client() as client:
                resp = client.request(method, path, **kwargs)
        except httpx.RequestError as e:
            logger.error("Payment gateway unreachable: %s %s error=%s", method, path, e)
            raise ExternalDependencyError("Payment gateway unavailable") from e
        if resp.status_code >= 400:
            logger.error("Payment gateway error: %s %s status=%s body=%s", method, path, resp.status_code, resp.text[:500])
            raise ExternalDependencyError(f"Payment gateway answered {resp.status_code}")
        try:
            data = resp.json()
        except ValueError:
            logger.error("Payment gateway sent non-JSON body: %s %s body=%s", method, path, resp.text[:500])
            raise ExternalDependencyError("Payment gateway returned an invalid response")
        if not isinstance(data, dict):
            logger.error("Payment gateway sent unexpected body: %s %s body=%s", method, path, resp.text[:500])
            raise ExternalDependencyError("Payment gateway returned an invalid response")
        return data

    def create_preference(self, manifest: PreferenceManifest) -> PreferenceResult:
        data = self._request("POST", "/checkout/preferences", json=manifest.to_payload())
        if not data.get("id"):
            logger.error("Payment gateway preference without id: external_reference=%s", manifest.external_reference)
            raise ExternalDependencyError("Payment gateway returned a preference without id")
        return PreferenceResult(
            preference_id=str(data["id"]),
            init_point=data.get("init_point"),
            sandbox_init_point=data.get("sandbox_init_point"),
        )

    def get_payment(self, payment_id: str) -> PaymentInfo:
        data = self._request("GET", f"/v1/payments/{payment_id}")
        ext = data.get("external_reference")
        try:
            amount = Decimal(str(data.get("transaction_amount") or 0))
        except InvalidOperation:
            logger.error("Payment gateway sent bad amount: payment_id=%s amount=%r", payment_id, data.get("transaction_amount"))
            raise ExternalDependencyError("Payment gateway returned an invalid amount")
        return PaymentInfo(
            id=str(data.get("id", payment_id)),
            status=data.get("status"),
            status_detail=data.get("status_detail"),
            transaction_amount=amount,
            payment_type_id=data.get("payment_type_id"),
            external_reference=str(ext) if ext is not None else None,
        )
