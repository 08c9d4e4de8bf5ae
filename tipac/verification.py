"""Ticket and invitation-card redemption checks.

Both verifiers load the record with its event, walk a fixed decision list
and, when the record passes, flip its used flag. The flag write is best
effort: the caller already holds a ``valid`` answer when it runs.
"""
from __future__ import annotations
from typing import Any, Dict, Optional, TypedDict

from sqlalchemy.exc import SQLAlchemyError

from .errors import InvalidInput, NotFound
from .log import get_logger
from .model.db import Event, Ticket, InvitationCard
from .model.records import RecordStore, PHYSICAL_BATCH

log = get_logger("verification")

# reasons
VALID = "valid"
NOT_FOUND = "not_found"
ALREADY_USED = "already_used"
NOT_ACTIVATED = "not_activated"
BATCH_DEACTIVATED = "batch_deactivated"


class VerificationResult(TypedDict):
    valid: bool
    reason: str
    message: str
    snapshot: Dict[str, Any]


def ticket_snapshot(t: Ticket, ev: Optional[Event]) -> Dict[str, Any]:
    return {
        "id": t.id,
        "event": {
            "title": ev.title if ev else None,
            "date": ev.date if ev else None,
            "location": ev.location if ev else None,
            "organizer_name": ev.organizer_name if ev else None,
            "organizer_logo_url": ev.organizer_logo_url if ev else None,
            "sponsor_logos": list(ev.sponsor_logos or []) if ev else [],
        },
        "buyer_name": t.buyer_name,
        "buyer_phone": t.buyer_phone,
        "purchase_channel": t.purchase_channel,
        "used": bool(t.used),
        "confirmation_code": t.confirmation_code,
    }


def card_snapshot(c: InvitationCard, ev: Optional[Event]) -> Dict[str, Any]:
    return {
        "id": c.id,
        "event": {
            "title": ev.title if ev else None,
            "date": ev.date if ev else None,
            "location": ev.location if ev else None,
        },
        "card_type": c.card_type,
        "batch_code": c.batch_code,
        "is_used": bool(c.is_used),
    }


def _result(valid: bool, reason: str, message: str,
            snapshot: Dict[str, Any]) -> VerificationResult:
    return {"valid": valid, "reason": reason, "message": message,
            "snapshot": snapshot}


class TicketVerifier:
    def __init__(self, store: RecordStore, *,
                 buyer_name_overrides_batch: bool = True) -> None:
        self.store = store
        self.buyer_name_overrides_batch = buyer_name_overrides_batch

    async def _batch_active(self, ticket: Ticket) -> Optional[bool]:
        """None when the batch cannot be resolved; never raises."""
        try:
            batch = await self.store.get_batch(ticket.batch_code)
        except SQLAlchemyError:
            log.exception("batch lookup failed for ticket %s (batch %s)",
                          ticket.id, ticket.batch_code)
            return None
        if batch is None:
            log.warning("batch %r not found for ticket %s",
                        ticket.batch_code, ticket.id)
            return None
        return bool(batch.is_active)

    async def lookup(self, ticket_id: Optional[str]) -> VerificationResult:
        if not ticket_id:
            raise InvalidInput("Missing ticket ID")
        found = await self.store.get_ticket_with_event(ticket_id)
        if found is None:
            raise NotFound("Ticket not found")
        ticket, event = found
        snap = ticket_snapshot(ticket, event)

        if ticket.used:
            return _result(False, ALREADY_USED, "Ticket already used", snap)

        if ticket.purchase_channel == PHYSICAL_BATCH:
            has_buyer = bool(ticket.buyer_name)
            # the group switch is reported ahead of the individual flag
            active = await self._batch_active(ticket)
            if active is False and not (
                has_buyer and self.buyer_name_overrides_batch
            ):
                return _result(False, BATCH_DEACTIVATED,
                               "Ticket batch has been deactivated", snap)
            if not ticket.is_active and not has_buyer:
                return _result(False, NOT_ACTIVATED,
                               "Ticket not activated", snap)

        try:
            await self.store.set_ticket_used(ticket.id, True)
        except SQLAlchemyError:
            log.exception("failed to mark ticket %s as used", ticket.id)
        return _result(True, VALID, "Valid ticket", snap)

    async def set_used(self, ticket_id: Optional[str],
                       used: Any) -> Dict[str, Any]:
        if not ticket_id:
            raise InvalidInput("Missing ticket ID")
        flag = used is True
        if not await self.store.set_ticket_used(ticket_id, flag):
            raise NotFound("Ticket not found")
        return {
            "valid": True,
            "message": ("Ticket marked as used" if flag
                        else "Ticket status updated"),
            "ticket": {"id": ticket_id, "used": flag},
        }


class CardVerifier:
    def __init__(self, store: RecordStore) -> None:
        self.store = store

    async def _batch_active(self, card: InvitationCard) -> Optional[bool]:
        try:
            batch = await self.store.get_card_batch(card.batch_code)
        except SQLAlchemyError:
            log.exception("batch lookup failed for card %s (batch %s)",
                          card.id, card.batch_code)
            return None
        if batch is None:
            log.warning("card batch %r not found for card %s",
                        card.batch_code, card.id)
            return None
        return bool(batch.is_active)

    async def lookup(self, card_id: Optional[str]) -> VerificationResult:
        if not card_id:
            raise InvalidInput("Missing card ID")
        found = await self.store.get_card_with_event(card_id)
        if found is None:
            raise NotFound("Invitation card not found")
        card, event = found
        snap = card_snapshot(card, event)

        if card.is_used:
            return _result(False, ALREADY_USED,
                           "Invitation card already used", snap)

        if await self._batch_active(card) is False:
            return _result(False, BATCH_DEACTIVATED,
                           "Invitation card batch has been deactivated",
                           snap)

        try:
            await self.store.set_card_used(card.id, True)
        except SQLAlchemyError:
            log.exception("failed to mark card %s as used", card.id)
        return _result(True, VALID, "Valid invitation card", snap)

    async def set_used(self, card_id: Optional[str],
                       is_used: Any) -> Dict[str, Any]:
        if not card_id:
            raise InvalidInput("Missing card ID")
        flag = is_used is True
        if not await self.store.set_card_used(card_id, flag):
            raise NotFound("Invitation card not found")
        return {
            "valid": True,
            "message": ("Invitation card marked as used" if flag
                        else "Invitation card status updated"),
            "card": {"id": card_id, "is_used": flag},
        }
