from __future__ import annotations
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select, update, delete, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import PENDING, CONFIRMED, FAILED
from ..errors import InvalidInput, UpstreamError
from ..helpers import now_ts, new_id, to_iso
from ..infra.sql import Gated
from ..log import get_logger
from .db import (
    Event, Ticket, Batch, InvitationCard, InvitationCardBatch, GalleryImage,
    SchoolApplication,
)

log = get_logger("records")

ONLINE = "online"
PHYSICAL_BATCH = "physical_batch"

# columns an admin may set through the CRUD endpoints; ticket status only
# moves through the payment bridge
EVENT_FIELDS = {
    "title", "date", "location", "description", "image_url",
    "organizer_name", "organizer_logo_url", "sponsor_logos",
}
TICKET_FIELDS = {
    "event_id", "email", "buyer_name", "buyer_phone", "quantity", "price",
    "purchase_channel", "used", "is_active", "batch_code",
    "confirmation_code",
}

BATCH_CODE_ATTEMPTS = 5
MAX_BATCH_SIZE = 1000


def _pick(data: Dict[str, Any], allowed: set, what: str) -> Dict[str, Any]:
    unknown = sorted(set(data) - allowed)
    if unknown:
        raise InvalidInput(f"Unknown {what} field(s): {', '.join(unknown)}")
    return dict(data)


# ----------------------------
# Serializers
# ----------------------------
def event_to_dict(ev: Event) -> Dict[str, Any]:
    return {
        "id": ev.id,
        "title": ev.title,
        "date": ev.date,
        "location": ev.location,
        "description": ev.description,
        "image_url": ev.image_url,
        "organizer_name": ev.organizer_name,
        "organizer_logo_url": ev.organizer_logo_url,
        "sponsor_logos": list(ev.sponsor_logos or []),
        "created_at": to_iso(ev.created_at),
        "updated_at": to_iso(ev.updated_at),
    }


def event_brief(ev: Event) -> Dict[str, Any]:
    return {"title": ev.title, "date": ev.date, "location": ev.location}


def ticket_to_dict(t: Ticket) -> Dict[str, Any]:
    return {
        "id": t.id,
        "event_id": t.event_id,
        "email": t.email,
        "buyer_name": t.buyer_name,
        "buyer_phone": t.buyer_phone,
        "quantity": t.quantity,
        "price": t.price,
        "purchase_channel": t.purchase_channel,
        "status": t.status,
        "pesapal_transaction_id": t.pesapal_transaction_id,
        "pesapal_status": t.pesapal_status,
        "confirmation_code": t.confirmation_code,
        "used": bool(t.used),
        "is_active": bool(t.is_active),
        "batch_code": t.batch_code,
        "purchased_at": to_iso(t.purchased_at),
        "updated_at": to_iso(t.updated_at),
    }


def gallery_to_dict(img: GalleryImage) -> Dict[str, Any]:
    return {
        "id": img.id,
        "filename": img.filename,
        "url": img.url,
        "original_name": img.original_name,
        "created_at": to_iso(img.created_at),
    }


class RecordStore:
    """Relational record store for events, tickets, cards and batches.

    Built per request around one AsyncSession; every operation runs in its
    own short transaction behind the engine's concurrency gate.
    """

    def __init__(self, *, db: AsyncSession, gated: Gated) -> None:
        self.db = db
        self.gated = gated

    @asynccontextmanager
    async def _tx(self):
        async with self.gated():
            async with self.db.begin():
                yield

    # ---- events
    async def list_events(self) -> List[Dict[str, Any]]:
        async with self._tx():
            rows = (await self.db.execute(
                select(Event).order_by(Event.date.desc())
            )).scalars().all()
        return [event_to_dict(e) for e in rows]

    async def get_event(self, event_id: str) -> Optional[Event]:
        async with self._tx():
            return await self.db.get(Event, event_id)

    async def create_event(self, data: Dict[str, Any]) -> str:
        fields = _pick(data, EVENT_FIELDS, "event")
        if not fields.get("title"):
            raise InvalidInput("Event title is required")
        fields.setdefault("sponsor_logos", [])
        ts = now_ts()
        event_id = new_id()
        async with self._tx():
            self.db.add(Event(id=event_id, created_at=ts, updated_at=ts,
                              **fields))
        return event_id

    async def update_event(self, event_id: str, data: Dict[str, Any]) -> bool:
        fields = _pick(data, EVENT_FIELDS, "event")
        fields["updated_at"] = now_ts()
        async with self._tx():
            res = await self.db.execute(
                update(Event).where(Event.id == event_id).values(**fields)
            )
        return res.rowcount > 0

    async def delete_event(self, event_id: str) -> bool:
        async with self._tx():
            res = await self.db.execute(
                delete(Event).where(Event.id == event_id)
            )
        return res.rowcount > 0

    # ---- tickets
    async def list_tickets_with_events(self) -> List[Dict[str, Any]]:
        async with self._tx():
            rows = (await self.db.execute(
                select(Ticket, Event)
                .join(Event, Event.id == Ticket.event_id)
                .order_by(Ticket.purchased_at.desc())
            )).all()
        items = []
        for t, ev in rows:
            d = ticket_to_dict(t)
            d["event"] = event_to_dict(ev)
            items.append(d)
        return items

    async def get_ticket_with_event(
        self, ticket_id: str
    ) -> Optional[Tuple[Ticket, Optional[Event]]]:
        async with self._tx():
            row = (await self.db.execute(
                select(Ticket, Event)
                .outerjoin(Event, Event.id == Ticket.event_id)
                .where(Ticket.id == ticket_id)
            )).first()
        if row is None:
            return None
        return row[0], row[1]

    async def create_ticket(self, **fields) -> Ticket:
        fields.setdefault("id", new_id())
        fields.setdefault("purchased_at", now_ts())
        fields.setdefault("quantity", 1)
        fields.setdefault("price", 0)
        fields.setdefault("used", False)
        fields.setdefault("is_active", False)
        fields.setdefault("status", PENDING)
        fields.setdefault("purchase_channel", ONLINE)
        ticket = Ticket(**fields)
        async with self._tx():
            self.db.add(ticket)
        return ticket

    async def create_admin_ticket(self, data: Dict[str, Any]) -> str:
        fields = _pick(data, TICKET_FIELDS, "ticket")
        if not fields.get("event_id"):
            raise InvalidInput("Ticket event_id is required")
        fields["status"] = CONFIRMED
        ticket = await self.create_ticket(**fields)
        return ticket.id

    async def update_ticket(self, ticket_id: str,
                            data: Dict[str, Any]) -> bool:
        fields = _pick(data, TICKET_FIELDS, "ticket")
        fields["updated_at"] = now_ts()
        async with self._tx():
            res = await self.db.execute(
                update(Ticket).where(Ticket.id == ticket_id).values(**fields)
            )
        return res.rowcount > 0

    async def delete_ticket(self, ticket_id: str) -> bool:
        async with self._tx():
            res = await self.db.execute(
                delete(Ticket).where(Ticket.id == ticket_id)
            )
        return res.rowcount > 0

    async def set_ticket_used(self, ticket_id: str, used: bool) -> bool:
        async with self._tx():
            res = await self.db.execute(
                update(Ticket).where(Ticket.id == ticket_id)
                .values(used=used, updated_at=now_ts())
            )
        return res.rowcount > 0

    async def activate_ticket(
        self, ticket_id: str, buyer_name: str, buyer_phone: Optional[str]
    ) -> Optional[Ticket]:
        async with self._tx():
            res = await self.db.execute(
                update(Ticket)
                .where(Ticket.id == ticket_id,
                       Ticket.purchase_channel == PHYSICAL_BATCH)
                .values(is_active=True, buyer_name=buyer_name,
                        buyer_phone=buyer_phone, updated_at=now_ts())
            )
            if res.rowcount == 0:
                return None
            return await self.db.get(Ticket, ticket_id,
                                     populate_existing=True)

    # ---- payment bookkeeping
    async def attach_transaction_id(self, ticket_id: str,
                                    tracking_id: str) -> None:
        async with self._tx():
            await self.db.execute(
                update(Ticket).where(Ticket.id == ticket_id)
                .values(pesapal_transaction_id=tracking_id,
                        updated_at=now_ts())
            )

    async def fail_pending_ticket(self, ticket_id: str) -> bool:
        async with self._tx():
            res = await self.db.execute(
                update(Ticket)
                .where(Ticket.id == ticket_id, Ticket.status == PENDING)
                .values(status=FAILED, updated_at=now_ts())
            )
        return res.rowcount > 0

    async def record_payment_status(
        self, ref: str, status: str, description: Optional[str],
        confirmation_code: Optional[str] = None,
    ) -> int:
        """Write a reconciled gateway status onto the matching ticket.

        ``ref`` is the internal ticket id or the gateway's tracking id. A
        terminal status is never overwritten, and writing the same outcome
        twice leaves the row unchanged.
        """
        async with self._tx():
            res = await self.db.execute(text("""
                UPDATE tickets SET
                  status = CASE WHEN status = :pending
                                THEN :status ELSE status END,
                  pesapal_status = :description,
                  confirmation_code = COALESCE(:code, confirmation_code)
                WHERE id = :ref OR pesapal_transaction_id = :ref
            """), {
                "pending": PENDING,
                "status": status,
                "description": description,
                "code": confirmation_code or None,
                "ref": ref,
            })
        return int(res.rowcount or 0)

    # ---- batches
    async def _create_batch(self, model, batch_code: str, **fields) -> str:
        # a failed insert expires every object loaded in the session
        for attempt in range(BATCH_CODE_ATTEMPTS):
            code = batch_code if attempt == 0 else (
                f"{batch_code}-{int(now_ts() * 1000)}-{attempt}"
            )
            try:
                async with self._tx():
                    if await self.db.get(model, code) is not None:
                        log.info("batch code %s taken, retrying", code)
                        continue
                    self.db.add(model(batch_code=code, created_at=now_ts(),
                                      **fields))
                return code
            except IntegrityError:
                log.info("batch code %s taken, retrying", code)
        raise UpstreamError(
            "Failed to create batch record after "
            f"{BATCH_CODE_ATTEMPTS} attempts"
        )

    async def create_ticket_batch(
        self, *, event_id: str, batch_code: str, num_tickets: int,
        price: int = 0,
    ) -> Tuple[str, List[Ticket]]:
        code = await self._create_batch(
            Batch, batch_code, event_id=event_id, num_tickets=num_tickets,
            is_active=True,
        )
        ts = now_ts()
        tickets = [
            Ticket(
                id=new_id(), event_id=event_id,
                purchase_channel=PHYSICAL_BATCH, status=CONFIRMED,
                is_active=True, used=False, batch_code=code, quantity=1,
                price=price, purchased_at=ts,
            )
            for _ in range(num_tickets)
        ]
        async with self._tx():
            self.db.add_all(tickets)
        return code, tickets

    async def get_batch(self, batch_code: Optional[str]) -> Optional[Batch]:
        if not batch_code:
            return None
        async with self._tx():
            return await self.db.get(Batch, batch_code)

    async def set_batch_active(self, batch_code: str, active: bool) -> bool:
        async with self._tx():
            res = await self.db.execute(
                update(Batch).where(Batch.batch_code == batch_code)
                .values(is_active=active)
            )
        return res.rowcount > 0

    # ---- invitation cards
    async def create_card_batch(
        self, *, event_id: str, batch_code: str, num_cards: int,
        card_type: Optional[str] = None,
    ) -> Tuple[str, List[InvitationCard]]:
        code = await self._create_batch(
            InvitationCardBatch, batch_code, event_id=event_id,
            num_cards=num_cards, card_type=card_type, is_active=True,
        )
        ts = now_ts()
        cards = [
            InvitationCard(id=new_id(), event_id=event_id, batch_code=code,
                           card_type=card_type, is_used=False, created_at=ts)
            for _ in range(num_cards)
        ]
        async with self._tx():
            self.db.add_all(cards)
        return code, cards

    async def get_card_with_event(
        self, card_id: str
    ) -> Optional[Tuple[InvitationCard, Optional[Event]]]:
        async with self._tx():
            row = (await self.db.execute(
                select(InvitationCard, Event)
                .outerjoin(Event, Event.id == InvitationCard.event_id)
                .where(InvitationCard.id == card_id)
            )).first()
        if row is None:
            return None
        return row[0], row[1]

    async def get_card_batch(
        self, batch_code: Optional[str]
    ) -> Optional[InvitationCardBatch]:
        if not batch_code:
            return None
        async with self._tx():
            return await self.db.get(InvitationCardBatch, batch_code)

    async def set_card_batch_active(self, batch_code: str,
                                    active: bool) -> bool:
        async with self._tx():
            res = await self.db.execute(
                update(InvitationCardBatch)
                .where(InvitationCardBatch.batch_code == batch_code)
                .values(is_active=active)
            )
        return res.rowcount > 0

    async def set_card_used(self, card_id: str, is_used: bool) -> bool:
        async with self._tx():
            res = await self.db.execute(
                update(InvitationCard).where(InvitationCard.id == card_id)
                .values(is_used=is_used)
            )
        return res.rowcount > 0

    # ---- gallery
    async def list_gallery_images(self) -> List[Dict[str, Any]]:
        async with self._tx():
            rows = (await self.db.execute(
                select(GalleryImage).order_by(GalleryImage.created_at.desc())
            )).scalars().all()
        return [gallery_to_dict(img) for img in rows]

    async def add_gallery_image(self, *, filename: str, url: str,
                                original_name: Optional[str]) -> Dict[str, Any]:
        img = GalleryImage(id=new_id(), filename=filename, url=url,
                           original_name=original_name, created_at=now_ts())
        async with self._tx():
            self.db.add(img)
        return gallery_to_dict(img)

    async def delete_gallery_image(self, image_id: str) -> bool:
        async with self._tx():
            res = await self.db.execute(
                delete(GalleryImage).where(GalleryImage.id == image_id)
            )
        return res.rowcount > 0

    # ---- school applications
    async def add_school_application(self, **fields) -> str:
        app_id = new_id()
        async with self._tx():
            self.db.add(SchoolApplication(
                id=app_id, status="pending", created_at=now_ts(), **fields
            ))
        return app_id
