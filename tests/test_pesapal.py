import httpx
import pytest

from tipac.errors import AuthError, GatewayError
from tipac.pesapal import Pesapal

pytestmark = pytest.mark.anyio

BASE = "https://pesapal.test/v3"


def _gateway(handler, **kw):
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    opts = dict(base_url=BASE, consumer_key="ck", consumer_secret="cs")
    opts.update(kw)
    return http, Pesapal(http, **opts)


async def test_missing_credentials_fail_without_a_call():
    calls = []
    http, gw = _gateway(lambda req: calls.append(req), consumer_key=None)
    async with http:
        with pytest.raises(AuthError):
            await gw.request_token()
    assert calls == []


async def test_token_missing_from_response():
    http, gw = _gateway(lambda req: httpx.Response(200, json={"expiryDate": "x"}))
    async with http:
        with pytest.raises(AuthError) as e:
            await gw.request_token()
    assert e.value.message == "Access token not found in response"


async def test_html_error_page_is_described():
    http, gw = _gateway(lambda req: httpx.Response(
        404, text="<!DOCTYPE html><html>nope</html>"))
    async with http:
        with pytest.raises(AuthError) as e:
            await gw.request_token()
    assert "HTML response" in e.value.details


async def test_submit_order_rejection_carries_upstream_body():
    body = {"error": {"code": "payment_details_not_found",
                      "message": "Pesapal merchant not found"},
            "status": "500"}
    http, gw = _gateway(lambda req: httpx.Response(200, json=body))
    async with http:
        with pytest.raises(GatewayError) as e:
            await gw.submit_order("tok", {"id": "t1"})
    assert e.value.status == 200
    assert e.value.body == body
    assert "merchant not found" in e.value.message


async def test_transport_error_becomes_gateway_error():
    def boom(req):
        raise httpx.ConnectError("refused", request=req)

    http, gw = _gateway(boom)
    async with http:
        with pytest.raises(GatewayError):
            await gw.transaction_status("tok", "trk-1")


async def test_transaction_status_query():
    seen = {}

    def handler(req):
        seen["url"] = req.url
        seen["auth"] = req.headers["Authorization"]
        return httpx.Response(200, json={
            "payment_status_description": "Completed", "status": "200",
        })

    http, gw = _gateway(handler)
    async with http:
        data = await gw.transaction_status("tok", "trk-1")
    assert data["payment_status_description"] == "Completed"
    assert seen["url"].path == "/v3/api/Transactions/GetTransactionStatus"
    assert seen["url"].params["orderTrackingId"] == "trk-1"
    assert seen["auth"] == "Bearer tok"
