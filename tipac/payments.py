"""Payment bridge between pending tickets and the Pesapal hosted checkout.

A purchase creates a ``pending`` ticket first, then talks to the gateway.
Outcomes arrive either by polling (:meth:`PaymentBridge.reconcile`) or by
the gateway's instant payment notification (:meth:`PaymentBridge.notify`);
both funnel into the same guarded status write.
"""
from __future__ import annotations
from typing import Any, Dict, Iterable, Optional, Tuple, TypedDict

from .config import PENDING, DEFAULT_STATUS_RULES
from .errors import AuthError, GatewayError, InvalidInput, InternalError
from .helpers import is_valid_email, new_id, round_half_up, text_field
from .log import get_logger
from .model.records import RecordStore, ONLINE
from .pesapal import PaymentGateway

log = get_logger("payments")

ORDER_DESCRIPTION = "Ticket purchase for TIPAC event"
DONATION_DESCRIPTION = "Donation to TIPAC"


def map_status(
    description: Optional[str],
    rules: Iterable[Tuple[str, str]] = DEFAULT_STATUS_RULES,
) -> str:
    """Map a gateway status description onto a ticket status."""
    if not description:
        return PENDING
    lowered = description.lower()
    for needle, status in rules:
        if needle in lowered:
            return status
    log.info("unmapped payment status description %r -> %s",
             description, PENDING)
    return PENDING


class PaymentRedirect(TypedDict):
    url: str
    ticket_id: str
    order_tracking_id: Optional[str]


def _purchaser(payload: Dict[str, Any]) -> Tuple[str, str]:
    first = text_field(payload, "firstName")
    last = text_field(payload, "lastName")
    if not first:
        first, _, last = text_field(payload, "name").partition(" ")
        last = last.strip()
    return first, last


def _positive_number(value: Any, name: str) -> float:
    try:
        n = float(value)
    except (TypeError, ValueError):
        raise InvalidInput(f"{name} must be a number")
    if n <= 0:
        raise InvalidInput(f"{name} must be positive")
    return n


class PaymentBridge:
    def __init__(
        self,
        store: RecordStore,
        gateway: PaymentGateway,
        *,
        callback_url: Optional[str],
        notification_id: Optional[str],
        currency: str = "UGX",
        country_code: str = "UG",
        status_rules: Iterable[Tuple[str, str]] = DEFAULT_STATUS_RULES,
    ) -> None:
        self.store = store
        self.gateway = gateway
        self.callback_url = callback_url
        self.notification_id = notification_id
        self.currency = currency
        self.country_code = country_code
        self.status_rules = tuple(status_rules)

    def _order(self, order_id: str, amount: float, description: str,
               first: str, last: str, email: str,
               phone: Optional[str]) -> Dict[str, Any]:
        return {
            "id": order_id,
            "currency": self.currency,
            "amount": amount,
            "description": description,
            "callback_url": self.callback_url,
            "notification_id": self.notification_id,
            "billing_address": {
                "email_address": email,
                "first_name": first,
                "last_name": last,
                "phone_number": phone or "",
                "country_code": self.country_code,
            },
        }

    async def initiate(self, payload: Dict[str, Any]) -> PaymentRedirect:
        first, last = _purchaser(payload)
        email = text_field(payload, "email")
        phone = (text_field(payload, "phoneNumber")
                 or text_field(payload, "phone"))
        event_id = payload.get("eventId")
        amount = payload.get("amount")
        quantity = payload.get("quantity")

        if not first or not email or not amount or not event_id \
                or not quantity:
            raise InvalidInput("Missing required fields")
        if not is_valid_email(email):
            raise InvalidInput("A valid email is required")
        amount = _positive_number(amount, "amount")
        qty = _positive_number(quantity, "quantity")
        if qty != int(qty):
            raise InvalidInput("quantity must be a whole number")
        qty = int(qty)
        if not self.notification_id:
            raise InternalError("Missing PESAPAL_IPN_ID configuration")

        # the pending row exists before any gateway call
        ticket = await self.store.create_ticket(
            event_id=str(event_id),
            email=email,
            quantity=qty,
            status=PENDING,
            price=round_half_up(amount / qty),
            purchase_channel=ONLINE,
            buyer_name=f"{first} {last}".strip(),
            buyer_phone=phone or None,
        )
        log.info("created pending ticket %s for event %s", ticket.id,
                 event_id)

        order = self._order(ticket.id, amount, ORDER_DESCRIPTION,
                            first, last, email, phone)
        try:
            token = await self.gateway.request_token()
            result = await self.gateway.submit_order(token, order)
            tracking_id = result.get("order_tracking_id")
            if tracking_id:
                await self.store.attach_transaction_id(ticket.id, tracking_id)
            if not result.get("redirect_url"):
                raise GatewayError("Redirect URL not found in response")
        except (AuthError, GatewayError) as e:
            log.error("payment for ticket %s failed: %s (upstream %s)",
                      ticket.id, e.message, getattr(e, "status", None))
            await self.store.fail_pending_ticket(ticket.id)
            raise

        return {
            "url": result["redirect_url"],
            "ticket_id": ticket.id,
            "order_tracking_id": tracking_id,
        }

    async def donate(self, payload: Dict[str, Any]) -> Dict[str, str]:
        """Hosted checkout for a donation; nothing is stored locally."""
        first = text_field(payload, "firstName")
        last = text_field(payload, "lastName")
        email = text_field(payload, "email")
        if not first or not last or not email or not payload.get("amount"):
            raise InvalidInput("Missing required fields")
        if not is_valid_email(email):
            raise InvalidInput("A valid email is required")
        amount = _positive_number(payload["amount"], "amount")
        if not self.notification_id:
            raise InternalError("Missing PESAPAL_IPN_ID configuration")

        order_id = new_id()
        token = await self.gateway.request_token()
        result = await self.gateway.submit_order(token, self._order(
            order_id, amount, DONATION_DESCRIPTION, first, last, email,
            text_field(payload, "phoneNumber"),
        ))
        if not result.get("redirect_url"):
            raise GatewayError("Redirect URL not found in response")
        log.info("donation order %s submitted (tracking %s)", order_id,
                 result.get("order_tracking_id"))
        return {"url": result["redirect_url"]}

    async def donation_status(
            self, tracking_id: Optional[str]) -> Dict[str, Any]:
        if not tracking_id:
            raise InvalidInput("Missing orderTrackingId")
        token = await self.gateway.request_token()
        data = await self.gateway.transaction_status(token, tracking_id)
        return {"status": data.get("status"),
                "payment_status_description":
                    data.get("payment_status_description")}

    async def _apply(self, ref: str, data: Dict[str, Any]) -> Optional[str]:
        description = data.get("payment_status_description")
        if not description:
            return None
        status = map_status(description, self.status_rules)
        rows = await self.store.record_payment_status(
            ref, status, description, data.get("confirmation_code")
        )
        if rows == 0:
            log.warning("no ticket matches payment reference %s", ref)
        return status

    async def reconcile(self, tracking_id: Optional[str]) -> Dict[str, Any]:
        if not tracking_id:
            raise InvalidInput("Missing orderTrackingId")
        token = await self.gateway.request_token()
        data = await self.gateway.transaction_status(token, tracking_id)
        ticket_status = await self._apply(tracking_id, data)
        return {
            "status": data.get("status"),
            "payment_status_description":
                data.get("payment_status_description"),
            "payment_method": data.get("payment_method"),
            "confirmation_code": data.get("confirmation_code"),
            "ticket_status": ticket_status,
        }

    async def notify(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        tracking_id = payload.get("OrderTrackingId")
        merchant_ref = payload.get("OrderMerchantReference")
        kind = payload.get("OrderNotificationType")
        if not tracking_id:
            raise InvalidInput("Missing OrderTrackingId")
        log.info("payment notification %s for %s (ref %s)", kind,
                 tracking_id, merchant_ref)

        token = await self.gateway.request_token()
        data = await self.gateway.transaction_status(token, tracking_id)
        await self._apply(merchant_ref or tracking_id, data)
        # acknowledgement in the shape the gateway expects
        return {
            "orderNotificationType": kind,
            "orderTrackingId": tracking_id,
            "orderMerchantReference": merchant_ref,
            "status": 200,
        }

    async def register_ipn(self, url: Optional[str]) -> Dict[str, Any]:
        if not url:
            raise InternalError("Missing PESAPAL_IPN_URL configuration")
        token = await self.gateway.request_token()
        data = await self.gateway.register_ipn(token, url)
        return {"success": True, "ipn_id": data.get("ipn_id"),
                "message": data.get("message")}

    async def list_ipns(self) -> Dict[str, Any]:
        token = await self.gateway.request_token()
        return {"success": True,
                "ipn_list": await self.gateway.list_ipns(token)}
