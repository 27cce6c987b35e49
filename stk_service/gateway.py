"""SwiftWallet v3 STK push client.

The client makes exactly one request per call and never retries. A reachable
gateway that declines the push (``success: false`` in a 2xx body) comes back
as a normal ``GatewayResult``; anything that stops us from getting a usable
answer is raised as ``GatewayTransportError``.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import requests
import structlog

from stk_service.errors import ConfigurationError

logger = structlog.get_logger(__name__)

INITIATE_PATH = "/pay-app/v3/stk-initiate/"


@dataclass
class GatewayResult:
    success: bool
    status: Optional[str] = None
    transaction_id: Optional[str] = None
    checkout_request_id: Optional[str] = None
    merchant_request_id: Optional[str] = None
    message: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def initiated(self) -> bool:
        return self.success is True and self.status == "INITIATED"

    @classmethod
    def from_response(cls, data: Dict[str, Any]) -> "GatewayResult":
        return cls(
            success=data.get("success") is True,
            status=data.get("status"),
            transaction_id=data.get("transaction_id"),
            checkout_request_id=data.get("checkout_request_id"),
            merchant_request_id=data.get("merchant_request_id"),
            message=data.get("message"),
            error=data.get("error"),
            error_code=data.get("error_code"),
            raw=data,
        )


class GatewayTransportError(Exception):
    """The gateway could not be reached or did not give a usable answer."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.body = body or {}

    @property
    def error_code(self) -> Optional[str]:
        return self.body.get("error_code")

    @property
    def error(self) -> Optional[str]:
        return self.body.get("error")

    @property
    def details(self) -> Dict[str, Any]:
        details = self.body.get("details")
        return details if isinstance(details, dict) else {}


def _json_body(response) -> Optional[Dict[str, Any]]:
    try:
        data = response.json()
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


class SwiftWalletClient:
    def __init__(
        self,
        api_key: Optional[str],
        channel_id: str,
        base_url: str = "https://swiftwallet.co.ke",
        timeout: float = 30.0,
    ):
        self.api_key = api_key
        self.channel_id = channel_id
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings) -> "SwiftWalletClient":
        return cls(
            api_key=settings.swift_api_key,
            channel_id=settings.swift_channel_id,
            base_url=settings.swift_api_base_url,
            timeout=settings.gateway_timeout,
        )

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def initiate(
        self,
        amount: int,
        phone: str,
        reference: str,
        customer_name: str,
        callback_url: str,
    ) -> GatewayResult:
        if not self.api_key:
            raise ConfigurationError("Server configuration error: API key not set")

        payload = {
            "amount": amount,
            "phone_number": phone,
            "channel_id": int(self.channel_id),
            "external_reference": reference,
            "customer_name": customer_name,
            "callback_url": callback_url,
        }

        try:
            response = requests.post(
                self.base_url + INITIATE_PATH,
                json=payload,
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.Timeout as e:
            raise GatewayTransportError(f"Gateway timed out: {e}")
        except requests.RequestException as e:
            raise GatewayTransportError(f"Gateway unreachable: {e}")

        body = _json_body(response)

        try:
            response.raise_for_status()
        except requests.HTTPError as e:
            raise GatewayTransportError(
                f"Gateway returned HTTP {response.status_code}",
                status_code=response.status_code,
                body=body,
            ) from e

        if body is None:
            raise GatewayTransportError(
                "Gateway returned an unexpected response body",
                status_code=response.status_code,
            )

        logger.info("gateway_response", reference=reference, response=body)
        return GatewayResult.from_response(body)
