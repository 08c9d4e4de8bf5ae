from __future__ import annotations
import html
import json
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import httpx
import redis.asyncio as redis
from redis.exceptions import RedisError

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.middleware.sessions import SessionMiddleware

from .config import Settings
from .deps import (
    records, messages, payment_bridge, ticket_verifier, card_verifier,
    require_admin, get_settings,
)
from .errors import AppError, InvalidInput, NotFound
from .helpers import is_valid_email, shuffled, text_field
from .infra.sql import make_async_engine, create_schema
from .log import setup_logging, get_logger
from .mailer import Mailer
from .model.db import Base
from .model.messages import MessageStore, BACKENDS
from .model.records import (
    RecordStore, ticket_to_dict, event_brief, MAX_BATCH_SIZE,
)
from .payments import PaymentBridge
from .pesapal import Pesapal
from .verification import TicketVerifier, CardVerifier
from . import youtube
from .admin import router as admin_router

log = get_logger("server")


# ---
# startup / shutdown
# ---
def _say_hello(settings: Settings) -> None:
    M = 'Redis' if settings.messages_backend == 'redis' else 'SQL'
    log.info('=' * 50)
    log.info('TIPAC is starting up...')
    log.info('   - Records  Backend: SQL (%s)',
             settings.database_url.split(':', 1)[0])
    log.info('   - Messages Backend: %s', M)
    log.info('=' * 50)


@asynccontextmanager
async def lifespan(app: FastAPI):
    state = app.state
    settings: Settings = state.settings
    _say_hello(settings)

    await create_schema(state.engine, Base.metadata)

    owns_http = state.http is None
    if owns_http:
        state.http = httpx.AsyncClient(
            limits=httpx.Limits(
                max_connections=64, max_keepalive_connections=32
            ),
        )
    if state.gateway is None:
        state.gateway = Pesapal(
            state.http,
            base_url=settings.pesapal_base_url,
            consumer_key=settings.pesapal_consumer_key,
            consumer_secret=settings.pesapal_consumer_secret,
            timeout=settings.pesapal_timeout,
        )

    owns_redis = settings.messages_backend == "redis" and state.redis is None
    if owns_redis:
        state.redis = redis.from_url(
            settings.redis_url,
            decode_responses=True,
            max_connections=settings.redis_max_conn,
            socket_timeout=2.0,
            socket_connect_timeout=2.0,
        )

    if state.mailer is None:
        state.mailer = Mailer(
            host=settings.smtp_host,
            port=settings.smtp_port,
            user=settings.email_user,
            password=settings.email_pass,
            recipient=settings.recipient_email,
        )

    try:
        yield
    finally:
        if owns_http:
            await state.http.aclose()
            state.http = None
        if owns_redis:
            await state.redis.aclose()
            state.redis = None
        await state.engine.dispose()


# ----------------------------
# Error mapping
# ----------------------------
async def _app_error(request: Request, exc: AppError):
    if exc.status_code >= 500:
        log.error("%s %s failed: %s", request.method, request.url.path,
                  exc.message)
    return ORJSONResponse(exc.payload(), status_code=exc.status_code)


async def _validation_error(request: Request, exc: RequestValidationError):
    return ORJSONResponse(
        {"error": "Invalid request body", "details": str(exc.errors())},
        status_code=400,
    )


async def _store_error(request: Request, exc: Exception):
    log.exception("%s %s: store failure", request.method, request.url.path)
    return ORJSONResponse(
        {"error": "Database operation failed", "details": str(exc)},
        status_code=500,
    )


async def _unexpected_error(request: Request, exc: Exception):
    log.exception("%s %s: unhandled error", request.method, request.url.path)
    return ORJSONResponse({"error": "Internal server error"},
                          status_code=500)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    if settings.messages_backend not in BACKENDS:
        raise RuntimeError(
            f"MESSAGES_BACKEND must be one of {BACKENDS}, "
            f"got {settings.messages_backend!r}"
        )
    setup_logging(settings.log_level)

    engine, SessionAsync, gated = make_async_engine(
        settings.database_url,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_timeout=settings.db_pool_timeout,
        gate_limit=settings.db_gate_limit,
    )

    app = FastAPI(
        title="TIPAC",
        default_response_class=ORJSONResponse,
        lifespan=lifespan,
    )
    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.session_secret,
        session_cookie="admin_session",
        max_age=settings.session_max_age,
        same_site="lax",
    )

    app.state.settings = settings
    app.state.engine = engine
    app.state.SessionAsync = SessionAsync
    app.state.gated = gated
    # collaborators; tests may preset these before startup
    app.state.http = None
    app.state.gateway = None
    app.state.redis = None
    app.state.mailer = None

    app.add_exception_handler(AppError, _app_error)
    app.add_exception_handler(RequestValidationError, _validation_error)
    app.add_exception_handler(SQLAlchemyError, _store_error)
    app.add_exception_handler(RedisError, _store_error)
    app.add_exception_handler(Exception, _unexpected_error)

    _install_routes(app)
    app.include_router(admin_router)
    return app


def _verification_response(result, key: str) -> Dict[str, Any]:
    return {
        "valid": result["valid"],
        "reason": result["reason"],
        "message": result["message"],
        key: result["snapshot"],
    }


def _not_found(exc: NotFound) -> ORJSONResponse:
    return ORJSONResponse({"valid": False, "message": exc.message},
                          status_code=404)


def _positive_int(value: Any, name: str) -> int:
    try:
        n = int(value)
    except (TypeError, ValueError):
        raise InvalidInput(f"{name} must be an integer")
    if n < 1:
        raise InvalidInput(f"{name} must be at least 1")
    return n


def validate_contact(data: Dict[str, Any]) -> list:
    def text(k):
        v = data.get(k)
        return v.strip() if isinstance(v, str) else ""

    errors = []
    if len(text("name")) < 2:
        errors.append("Name must be at least 2 characters long")
    if not is_valid_email(text("email")):
        errors.append("A valid email is required")
    if len(text("subject")) < 3:
        errors.append("Subject must be at least 3 characters long")
    if len(text("message")) < 10:
        errors.append("Message must be at least 10 characters long")
    return errors


SCHOOL_APPLICATION_FIELDS = {
    "institutionName": "institution_name",
    "address": "address",
    "city": "city",
    "contactPerson": "contact_person",
    "email": "email",
    "phone": "phone",
    "institutionType": "institution_type",
    "numberOfStudents": "number_of_students",
    "gradeLevels": "grade_levels",
    "interestReason": "interest_reason",
}


def _install_routes(app: FastAPI) -> None:

    # ----------------------------
    # Ticket verification
    # ----------------------------
    @app.get("/api/tickets/verify/{ticket_id}")
    async def verify_ticket(
        ticket_id: str, verifier: TicketVerifier = Depends(ticket_verifier)
    ):
        try:
            result = await verifier.lookup(ticket_id)
        except NotFound as e:
            return _not_found(e)
        return _verification_response(result, "ticket")

    @app.post("/api/tickets/verify")
    async def verify_ticket_body(
        payload: dict, verifier: TicketVerifier = Depends(ticket_verifier)
    ):
        try:
            result = await verifier.lookup(payload.get("ticket_id"))
        except NotFound as e:
            return _not_found(e)
        return _verification_response(result, "ticket")

    @app.put("/api/tickets/verify/{ticket_id}",
             dependencies=[Depends(require_admin)])
    async def override_ticket_used(
        ticket_id: str, payload: dict,
        verifier: TicketVerifier = Depends(ticket_verifier),
    ):
        try:
            return await verifier.set_used(ticket_id, payload.get("used"))
        except NotFound as e:
            return _not_found(e)

    # ----------------------------
    # Invitation card verification
    # ----------------------------
    @app.get("/api/invitation-cards/verify/{card_id}")
    async def verify_card(
        card_id: str, verifier: CardVerifier = Depends(card_verifier)
    ):
        try:
            result = await verifier.lookup(card_id)
        except NotFound as e:
            return _not_found(e)
        return _verification_response(result, "card")

    @app.post("/api/invitation-cards/verify")
    async def verify_card_body(
        payload: dict, verifier: CardVerifier = Depends(card_verifier)
    ):
        try:
            result = await verifier.lookup(payload.get("card_id"))
        except NotFound as e:
            return _not_found(e)
        return _verification_response(result, "card")

    @app.put("/api/invitation-cards/verify/{card_id}",
             dependencies=[Depends(require_admin)])
    async def override_card_used(
        card_id: str, payload: dict,
        verifier: CardVerifier = Depends(card_verifier),
    ):
        try:
            return await verifier.set_used(card_id, payload.get("is_used"))
        except NotFound as e:
            return _not_found(e)

    # ----------------------------
    # Physical tickets
    # ----------------------------
    @app.post("/api/tickets/activate", dependencies=[Depends(require_admin)])
    async def activate_ticket(payload: dict,
                              store: RecordStore = Depends(records)):
        ticket_id = payload.get("ticket_id")
        buyer_name = text_field(payload, "buyer_name")
        if not ticket_id or not buyer_name:
            raise InvalidInput(
                "Missing required fields: ticket_id, buyer_name"
            )
        ticket = await store.activate_ticket(
            ticket_id, buyer_name, text_field(payload, "buyer_phone") or None
        )
        if ticket is None:
            raise NotFound("Ticket not found or not a physical batch ticket")
        return {"message": "Ticket activated successfully",
                "ticket": ticket_to_dict(ticket)}

    @app.get("/api/tickets/fetch/{ticket_id}")
    async def fetch_ticket(ticket_id: str,
                           store: RecordStore = Depends(records)):
        found = await store.get_ticket_with_event(ticket_id)
        if found is None:
            raise NotFound("Ticket not found")
        t, ev = found
        return {
            "id": t.id,
            "event": {
                "title": (ev.title if ev else None) or "Unknown Event",
                "date": (ev.date if ev else None) or "",
                "location": (ev.location if ev else None)
                or "Unknown Location",
                "organizer_name": ev.organizer_name if ev else None,
                "organizer_logo_url": ev.organizer_logo_url if ev else None,
                "sponsor_logos": list(ev.sponsor_logos or []) if ev else [],
            },
            "buyer_name": t.buyer_name or "",
            "buyer_phone": t.buyer_phone or "",
            "purchase_channel": t.purchase_channel or "online",
            "confirmation_code": (
                t.pesapal_transaction_id or t.confirmation_code or None
            ),
        }

    @app.post("/api/tickets/generate-batch", status_code=201,
              dependencies=[Depends(require_admin)])
    async def generate_batch(payload: dict,
                             store: RecordStore = Depends(records)):
        event_id = payload.get("event_id")
        batch_code = text_field(payload, "batch_code")
        if not event_id or not payload.get("num_tickets") or not batch_code:
            raise InvalidInput(
                "Missing required fields: event_id, num_tickets, batch_code"
            )
        num = _positive_int(payload["num_tickets"], "num_tickets")
        if num > MAX_BATCH_SIZE:
            raise InvalidInput(f"num_tickets must be at most {MAX_BATCH_SIZE}")
        price = payload.get("price") or 0
        if not isinstance(price, int) or price < 0:
            raise InvalidInput("price must be a non-negative integer")

        event = await store.get_event(event_id)
        if event is None:
            raise NotFound("Event not found")
        brief = event_brief(event)
        code, tickets = await store.create_ticket_batch(
            event_id=event_id, batch_code=batch_code, num_tickets=num,
            price=price,
        )
        log.info("generated %d tickets in batch %s", len(tickets), code)
        return {
            "batch_code": code,
            "event": brief,
            "price": price,
            "tickets": [
                {
                    "id": t.id,
                    "qr_data": json.dumps({
                        "ticket_id": t.id,
                        "batch_code": code,
                        "event_id": event_id,
                    }),
                }
                for t in tickets
            ],
        }

    # ----------------------------
    # Payments (Pesapal)
    # ----------------------------
    @app.post("/api/tickets/pesapal")
    async def initiate_payment(
        payload: dict, bridge: PaymentBridge = Depends(payment_bridge)
    ):
        return await bridge.initiate(payload)

    @app.get("/api/tickets/pesapal-status")
    async def payment_status(
        orderTrackingId: Optional[str] = None,
        bridge: PaymentBridge = Depends(payment_bridge),
    ):
        return await bridge.reconcile(orderTrackingId)

    @app.post("/api/pesapal")
    async def donate(
        payload: dict, bridge: PaymentBridge = Depends(payment_bridge)
    ):
        return await bridge.donate(payload)

    @app.get("/api/pesapal-status")
    async def donation_status(
        orderTrackingId: Optional[str] = None,
        bridge: PaymentBridge = Depends(payment_bridge),
    ):
        return await bridge.donation_status(orderTrackingId)

    @app.post("/api/pesapal-ipn")
    async def payment_notification(
        payload: dict, bridge: PaymentBridge = Depends(payment_bridge)
    ):
        return await bridge.notify(payload)

    @app.post("/api/pesapal/register-ipn",
              dependencies=[Depends(require_admin)])
    async def register_ipn(
        bridge: PaymentBridge = Depends(payment_bridge),
        settings: Settings = Depends(get_settings),
    ):
        return await bridge.register_ipn(settings.pesapal_ipn_url)

    @app.get("/api/pesapal/register-ipn",
             dependencies=[Depends(require_admin)])
    async def list_ipns(bridge: PaymentBridge = Depends(payment_bridge)):
        return await bridge.list_ipns()

    # ----------------------------
    # Public content
    # ----------------------------
    @app.get("/api/gallery-images")
    async def gallery_images(store: RecordStore = Depends(records)):
        images = await store.list_gallery_images()
        return {"images": [
            {"filename": img["filename"], "url": img["url"]}
            for img in shuffled(images)
        ]}

    @app.get("/api/youtube")
    async def youtube_videos(request: Request,
                             settings: Settings = Depends(get_settings)):
        videos = await youtube.channel_videos(
            request.app.state.http,
            settings.youtube_api_key,
            settings.youtube_channel_id,
        )
        return {"videos": videos}

    @app.post("/api/contact")
    async def contact(request: Request, payload: dict,
                      ms: MessageStore = Depends(messages)):
        errors = validate_contact(payload)
        if errors:
            log.info("contact validation failed: %s", errors)
            raise InvalidInput(", ".join(errors))

        data = {
            "name": html.escape(payload["name"].strip()),
            "email": payload["email"].strip().lower(),
            "subject": html.escape(payload["subject"].strip()),
            "message": html.escape(payload["message"].strip()),
        }
        msg_id = await ms.add_message(data)
        log.info("contact message %s stored", msg_id)

        # the message is stored; a mail failure must not fail the request
        try:
            await request.app.state.mailer.send_contact_notification(data)
        except Exception:
            log.exception("email notification for message %s failed",
                          msg_id)
        return {"success": True, "id": msg_id}

    @app.post("/api/school-application")
    async def school_application(payload: dict,
                                 store: RecordStore = Depends(records)):
        missing = [k for k in SCHOOL_APPLICATION_FIELDS
                   if payload.get(k) in (None, "")]
        if missing:
            raise InvalidInput("All fields are required")
        if not is_valid_email(str(payload["email"])):
            raise InvalidInput("A valid email is required")
        fields = {col: payload[k]
                  for k, col in SCHOOL_APPLICATION_FIELDS.items()}
        fields["number_of_students"] = _positive_int(
            payload["numberOfStudents"], "numberOfStudents"
        )
        app_id = await store.add_school_application(**fields)
        return {"success": True,
                "message": "Application submitted successfully",
                "id": app_id}
