from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, TypedDict
import json

import httpx

from .errors import AuthError, GatewayError
from .log import get_logger

log = get_logger("pesapal")


# ----------------------------
# Payment Gateway Interface
# ----------------------------
class SubmitOrderResult(TypedDict):
    order_tracking_id: Optional[str]
    redirect_url: Optional[str]


class PaymentGateway(ABC):
    @abstractmethod
    async def request_token(self) -> str: ...

    @abstractmethod
    async def submit_order(
            self, token: str, order: Dict[str, Any]
    ) -> SubmitOrderResult: ...

    # {payment_status_description, status, payment_method, confirmation_code}
    @abstractmethod
    async def transaction_status(
            self, token: str, tracking_id: str
    ) -> Dict[str, Any]: ...

    @abstractmethod
    async def register_ipn(self, token: str, url: str) -> Dict[str, Any]: ...

    @abstractmethod
    async def list_ipns(self, token: str) -> List[Dict[str, Any]]: ...


def _decode(res: httpx.Response) -> Any:
    try:
        return res.json()
    except (json.JSONDecodeError, ValueError):
        return None


def _describe(res: httpx.Response) -> str:
    text = res.text or ""
    if text.lstrip().lower().startswith("<!doctype"):
        return "HTML response received (likely incorrect endpoint)"
    return text[:200]


def _upstream_error(body: Any) -> Optional[Any]:
    # Pesapal reports some rejections as 200 with an "error" object
    if isinstance(body, dict) and body.get("error"):
        return body["error"]
    return None


# ----------------------------
# Pesapal v3 implementation
# ----------------------------
class Pesapal(PaymentGateway):
    def __init__(
        self,
        http: httpx.AsyncClient,
        *,
        base_url: str,
        consumer_key: Optional[str],
        consumer_secret: Optional[str],
        timeout: float = 10.0,
    ) -> None:
        self.http = http
        self.base_url = base_url.rstrip("/")
        self.consumer_key = consumer_key
        self.consumer_secret = consumer_secret
        self.timeout = timeout

    def _headers(self, token: Optional[str] = None) -> Dict[str, str]:
        h = {"Content-Type": "application/json", "Accept": "application/json"}
        if token:
            h["Authorization"] = f"Bearer {token}"
        return h

    async def request_token(self) -> str:
        # no caching: every caller re-authenticates
        if not self.consumer_key or not self.consumer_secret:
            raise AuthError(
                "Missing PESAPAL_CONSUMER_KEY or PESAPAL_CONSUMER_SECRET"
            )
        url = f"{self.base_url}/api/Auth/RequestToken"
        try:
            res = await self.http.post(
                url,
                json={
                    "consumer_key": self.consumer_key,
                    "consumer_secret": self.consumer_secret,
                },
                headers=self._headers(),
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            log.error("token request to %s failed: %r", url, e)
            raise AuthError("Failed to fetch access token", details=repr(e))

        body = _decode(res)
        if res.is_error or body is None or _upstream_error(body):
            log.error("token request rejected: %s %s", res.status_code,
                      _describe(res))
            raise AuthError(
                f"Failed to fetch access token: {res.status_code}",
                details=_describe(res),
            )
        token = body.get("token") if isinstance(body, dict) else None
        if not token:
            raise AuthError("Access token not found in response")
        return token

    async def submit_order(
            self, token: str, order: Dict[str, Any]
    ) -> SubmitOrderResult:
        url = f"{self.base_url}/api/Transactions/SubmitOrderRequest"
        try:
            res = await self.http.post(url, json=order,
                                       headers=self._headers(token),
                                       timeout=self.timeout)
        except httpx.HTTPError as e:
            log.error("order submission for %s failed: %r",
                      order.get("id"), e)
            raise GatewayError("Failed to submit payment request",
                               body=repr(e))

        body = _decode(res)
        err = _upstream_error(body)
        if res.is_error or err:
            if isinstance(err, dict):
                detail = err.get("message") or json.dumps(err)
            elif isinstance(body, dict):
                detail = body.get("message") or json.dumps(body)
            else:
                detail = _describe(res)
            raise GatewayError(
                f"Payment request failed: {detail}",
                status=res.status_code, body=body if body is not None
                else _describe(res),
            )
        if not isinstance(body, dict):
            raise GatewayError(
                "Invalid response from payment processor",
                status=res.status_code, body=_describe(res),
            )
        return {
            "order_tracking_id": body.get("order_tracking_id"),
            "redirect_url": body.get("redirect_url"),
        }

    async def transaction_status(
            self, token: str, tracking_id: str
    ) -> Dict[str, Any]:
        url = f"{self.base_url}/api/Transactions/GetTransactionStatus"
        try:
            res = await self.http.get(url,
                                      params={"orderTrackingId": tracking_id},
                                      headers=self._headers(token),
                                      timeout=self.timeout)
        except httpx.HTTPError as e:
            raise GatewayError("Failed to fetch transaction status",
                               body=repr(e))
        body = _decode(res)
        if res.is_error or not isinstance(body, dict):
            raise GatewayError(
                f"Failed to fetch transaction status: {res.status_code}",
                status=res.status_code, body=_describe(res),
            )
        return body

    async def register_ipn(self, token: str, url: str) -> Dict[str, Any]:
        endpoint = f"{self.base_url}/api/URLSetup/RegisterIPN"
        try:
            res = await self.http.post(
                endpoint,
                json={"url": url, "ipn_notification_type": "POST"},
                headers=self._headers(token),
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            raise GatewayError("Failed to register IPN", body=repr(e))
        body = _decode(res)
        err = _upstream_error(body)
        if res.is_error or err or not isinstance(body, dict):
            if isinstance(err, dict):
                msg = (f"IPN Registration failed: {err.get('type')} - "
                       f"{err.get('message')}")
            else:
                msg = f"Failed to register IPN: {res.status_code}"
            raise GatewayError(msg, status=res.status_code,
                               body=body if body is not None
                               else _describe(res))
        return body

    async def list_ipns(self, token: str) -> List[Dict[str, Any]]:
        endpoint = f"{self.base_url}/api/URLSetup/GetIpnList"
        try:
            res = await self.http.get(endpoint, headers=self._headers(token),
                                      timeout=self.timeout)
        except httpx.HTTPError as e:
            raise GatewayError("Failed to get IPN list", body=repr(e))
        body = _decode(res)
        if res.is_error or _upstream_error(body):
            raise GatewayError(f"Failed to get IPN list: {res.status_code}",
                               status=res.status_code,
                               body=body if body is not None
                               else _describe(res))
        return body if isinstance(body, list) else []
