from __future__ import annotations
import json
import math
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Request

from .config import Settings
from .deps import records, messages, require_admin, is_admin, get_settings
from .errors import InvalidInput, NotFound, Unauthorized
from .helpers import ct_equal, now_ts, text_field
from .log import get_logger
from .model.messages import MessageStore
from .model.records import RecordStore, event_brief, MAX_BATCH_SIZE

log = get_logger("admin")

router = APIRouter(prefix="/admin/api")
guarded = [Depends(require_admin)]

MESSAGES_PAGE_SIZE = 10
# bookkeeping keys the admin UI echoes back on edit
_READ_ONLY = ("id", "created_at", "updated_at", "purchased_at", "event")


def _editable(payload: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in payload.items() if k not in _READ_ONLY}


def _target_id(id: Optional[str], payload: Optional[Dict[str, Any]],
               what: str) -> str:
    target = id or (payload or {}).get("id")
    if not target:
        raise InvalidInput(f"{what} ID is required")
    return str(target)


def _switch(payload: Dict[str, Any]) -> bool:
    value = payload.get("is_active")
    if not isinstance(value, bool):
        raise InvalidInput("is_active must be a boolean")
    return value


# ----------------------------
# Session
# ----------------------------
@router.post("/login")
async def login(request: Request, payload: dict,
                settings: Settings = Depends(get_settings)):
    email = str(payload.get("email") or "").strip().lower()
    password = str(payload.get("password") or "")
    ok_user = ct_equal(email, settings.admin_email.lower())
    ok_pass = ct_equal(password, settings.admin_password)
    if not (ok_user and ok_pass):
        log.warning("admin login rejected for %r", email)
        request.session.clear()
        raise Unauthorized("Invalid credentials")
    request.session["admin_user"] = email
    request.session["issued_at"] = now_ts()
    log.info("admin %s logged in", email)
    return {"success": True}


@router.post("/logout")
async def logout(request: Request):
    request.session.clear()
    return {"success": True}


@router.get("/session")
async def session(request: Request):
    if not is_admin(request):
        return {"authenticated": False}
    return {"authenticated": True, "user": request.session["admin_user"]}


# ----------------------------
# Events
# ----------------------------
@router.get("/events", dependencies=guarded)
async def list_events(store: RecordStore = Depends(records)):
    return await store.list_events()


@router.post("/events", status_code=201, dependencies=guarded)
async def create_event(payload: dict, store: RecordStore = Depends(records)):
    event_id = await store.create_event(_editable(payload))
    return {"message": "Event created successfully", "eventId": event_id}


@router.put("/events", dependencies=guarded)
async def update_event(payload: dict, store: RecordStore = Depends(records)):
    event_id = _target_id(None, payload, "Event")
    if not await store.update_event(event_id, _editable(payload)):
        raise NotFound("Event not found")
    return {"message": "Event updated successfully"}


@router.delete("/events", dependencies=guarded)
async def delete_event(id: Optional[str] = None,
                       payload: Optional[dict] = Body(None),
                       store: RecordStore = Depends(records)):
    event_id = _target_id(id, payload, "Event")
    if not await store.delete_event(event_id):
        raise NotFound("Event not found")
    return {"message": "Event deleted successfully"}


# ----------------------------
# Tickets
# ----------------------------
@router.get("/tickets", dependencies=guarded)
async def list_tickets(store: RecordStore = Depends(records)):
    return await store.list_tickets_with_events()


@router.post("/tickets", status_code=201, dependencies=guarded)
async def create_ticket(payload: dict, store: RecordStore = Depends(records)):
    ticket_id = await store.create_admin_ticket(_editable(payload))
    return {"message": "Ticket created successfully", "ticketId": ticket_id}


@router.put("/tickets", dependencies=guarded)
async def update_ticket(payload: dict, store: RecordStore = Depends(records)):
    ticket_id = _target_id(None, payload, "Ticket")
    if not await store.update_ticket(ticket_id, _editable(payload)):
        raise NotFound("Ticket not found")
    return {"message": "Ticket updated successfully"}


@router.delete("/tickets", dependencies=guarded)
async def delete_ticket(id: Optional[str] = None,
                        payload: Optional[dict] = Body(None),
                        store: RecordStore = Depends(records)):
    ticket_id = _target_id(id, payload, "Ticket")
    if not await store.delete_ticket(ticket_id):
        raise NotFound("Ticket not found")
    return {"message": "Ticket deleted successfully"}


# ----------------------------
# Contact messages
# ----------------------------
@router.get("/messages", dependencies=guarded)
async def list_messages(page: int = 1, ms: MessageStore = Depends(messages)):
    page = max(1, page)
    total, items = await ms.list_messages(page=page,
                                          page_size=MESSAGES_PAGE_SIZE)
    return {
        "page": page,
        "total": total,
        "totalPages": math.ceil(total / MESSAGES_PAGE_SIZE),
        "messages": items,
    }


async def _mark_read(message_id: str, payload: dict, ms: MessageStore):
    read = payload.get("read")
    if not isinstance(read, bool):
        raise InvalidInput("read must be a boolean")
    if not await ms.set_read(message_id, read):
        raise NotFound("Message not found")
    return {"success": True, "id": message_id, "read": read}


@router.patch("/messages/{message_id}", dependencies=guarded)
async def patch_message(message_id: str, payload: dict,
                        ms: MessageStore = Depends(messages)):
    return await _mark_read(message_id, payload, ms)


@router.put("/messages/{message_id}", dependencies=guarded)
async def put_message(message_id: str, payload: dict,
                      ms: MessageStore = Depends(messages)):
    return await _mark_read(message_id, payload, ms)


@router.delete("/messages/{message_id}", dependencies=guarded)
async def delete_message(message_id: str,
                         ms: MessageStore = Depends(messages)):
    if not await ms.delete_message(message_id):
        raise NotFound("Message not found")
    return {"success": True}


# ----------------------------
# Gallery
# ----------------------------
@router.get("/gallery", dependencies=guarded)
async def list_gallery(store: RecordStore = Depends(records)):
    return {"images": await store.list_gallery_images()}


@router.post("/gallery", status_code=201, dependencies=guarded)
async def add_gallery_image(payload: dict,
                            store: RecordStore = Depends(records)):
    filename = text_field(payload, "filename")
    url = text_field(payload, "url")
    if not filename or not url:
        raise InvalidInput("filename and url are required")
    image = await store.add_gallery_image(
        filename=filename, url=url,
        original_name=text_field(payload, "original_name") or None,
    )
    return {"success": True, "image": image}


@router.delete("/gallery", dependencies=guarded)
async def delete_gallery_image(id: Optional[str] = None,
                               payload: Optional[dict] = Body(None),
                               store: RecordStore = Depends(records)):
    image_id = _target_id(id, payload, "Image")
    if not await store.delete_gallery_image(image_id):
        raise NotFound("Image not found")
    return {"success": True}


# ----------------------------
# Batches & invitation cards
# ----------------------------
@router.post("/invitation-cards", status_code=201, dependencies=guarded)
async def generate_invitation_cards(payload: dict,
                                    store: RecordStore = Depends(records)):
    event_id = payload.get("event_id")
    batch_code = text_field(payload, "batch_code")
    if not event_id or not payload.get("num_cards") or not batch_code:
        raise InvalidInput(
            "Missing required fields: event_id, num_cards, batch_code"
        )
    try:
        num = int(payload["num_cards"])
    except (TypeError, ValueError):
        raise InvalidInput("num_cards must be an integer")
    if not 1 <= num <= MAX_BATCH_SIZE:
        raise InvalidInput(f"num_cards must be between 1 and {MAX_BATCH_SIZE}")

    event = await store.get_event(event_id)
    if event is None:
        raise NotFound("Event not found")
    brief = event_brief(event)
    code, cards = await store.create_card_batch(
        event_id=event_id, batch_code=batch_code, num_cards=num,
        card_type=text_field(payload, "card_type") or None,
    )
    log.info("generated %d invitation cards in batch %s", len(cards), code)
    return {
        "batch_code": code,
        "event": brief,
        "cards": [
            {
                "id": c.id,
                "qr_data": json.dumps({
                    "card_id": c.id,
                    "batch_code": code,
                    "event_id": event_id,
                }),
            }
            for c in cards
        ],
    }


@router.patch("/batches/{batch_code}", dependencies=guarded)
async def switch_ticket_batch(batch_code: str, payload: dict,
                              store: RecordStore = Depends(records)):
    active = _switch(payload)
    if not await store.set_batch_active(batch_code, active):
        raise NotFound("Batch not found")
    log.info("ticket batch %s is_active=%s", batch_code, active)
    return {"batch_code": batch_code, "is_active": active}


@router.patch("/invitation-card-batches/{batch_code}", dependencies=guarded)
async def switch_card_batch(batch_code: str, payload: dict,
                            store: RecordStore = Depends(records)):
    active = _switch(payload)
    if not await store.set_card_batch_active(batch_code, active):
        raise NotFound("Batch not found")
    log.info("invitation card batch %s is_active=%s", batch_code, active)
    return {"batch_code": batch_code, "is_active": active}
