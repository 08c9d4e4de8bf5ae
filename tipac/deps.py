from typing import AsyncIterator

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from .config import Settings
from .errors import Unauthorized
from .helpers import now_ts
from .model.messages import MessageStore, new_store
from .model.records import RecordStore
from .payments import PaymentBridge
from .pesapal import PaymentGateway
from .verification import TicketVerifier, CardVerifier


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


async def get_db(request: Request) -> AsyncIterator[AsyncSession]:
    async with request.app.state.SessionAsync() as session:
        yield session


async def records(
    request: Request, db: AsyncSession = Depends(get_db)
) -> RecordStore:
    return RecordStore(db=db, gated=request.app.state.gated)


async def messages(
    request: Request, db: AsyncSession = Depends(get_db)
) -> MessageStore:
    state = request.app.state
    if state.settings.messages_backend == "pg":
        return new_store("pg", db=db, gated=state.gated)
    return new_store("redis", r=state.redis)


def get_gateway(request: Request) -> PaymentGateway:
    gateway = getattr(request.app.state, "gateway", None)
    if gateway is None:
        raise RuntimeError("payment gateway not initialized")
    return gateway


async def payment_bridge(
    store: RecordStore = Depends(records),
    gateway: PaymentGateway = Depends(get_gateway),
    settings: Settings = Depends(get_settings),
) -> PaymentBridge:
    return PaymentBridge(
        store, gateway,
        callback_url=settings.pesapal_callback_url,
        notification_id=settings.pesapal_ipn_id,
        currency=settings.pesapal_currency,
        country_code=settings.pesapal_country_code,
        status_rules=settings.status_rules,
    )


async def ticket_verifier(
    store: RecordStore = Depends(records),
    settings: Settings = Depends(get_settings),
) -> TicketVerifier:
    return TicketVerifier(
        store,
        buyer_name_overrides_batch=settings.buyer_name_overrides_batch,
    )


async def card_verifier(
    store: RecordStore = Depends(records),
) -> CardVerifier:
    return CardVerifier(store)


# ----------------------------
# Admin session
# ----------------------------
def is_admin(request: Request) -> bool:
    # signature and cookie age are checked by SessionMiddleware; the
    # absolute lifetime is checked here
    session = request.session
    if not session.get("admin_user"):
        return False
    try:
        issued_at = float(session.get("issued_at", 0))
    except (TypeError, ValueError):
        return False
    max_age = request.app.state.settings.session_max_age
    return 0 <= now_ts() - issued_at <= max_age


def require_admin(request: Request) -> None:
    if not is_admin(request):
        request.session.clear()
        raise Unauthorized()
