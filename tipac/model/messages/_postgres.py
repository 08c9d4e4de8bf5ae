from __future__ import annotations
from typing import Any, Callable, AsyncContextManager, Dict, List, Tuple
from sqlalchemy import select, update, delete, func
from sqlalchemy.ext.asyncio import AsyncSession

from ...helpers import new_id, now_ts, to_iso
from ..db import ContactMessage


def _to_item(m: ContactMessage) -> Dict[str, Any]:
    return {
        "id": m.id,
        "name": m.name,
        "email": m.email,
        "subject": m.subject,
        "message": m.message,
        "read": bool(m.read),
        "status": m.status,
        "created_at": to_iso(m.created_at),
        "updated_at": to_iso(m.updated_at),
    }


class MessageStore:
    def __init__(
        self, *, db: AsyncSession,
        gated: Callable[[], AsyncContextManager[None]]
    ) -> None:
        self.db = db
        self.gated = gated

    async def add_message(self, mapping: Dict[str, Any]) -> str:
        msg_id = new_id()
        async with self.gated():
            async with self.db.begin():
                self.db.add(ContactMessage(
                    id=msg_id,
                    name=mapping["name"],
                    email=mapping["email"],
                    subject=mapping["subject"],
                    message=mapping["message"],
                    read=False,
                    status="unread",
                    created_at=now_ts(),
                ))
        return msg_id

    async def list_messages(
        self, page: int = 1, page_size: int = 10
    ) -> Tuple[int, List[Dict[str, Any]]]:
        async with self.gated():
            async with self.db.begin():
                total = (await self.db.execute(
                    select(func.count()).select_from(ContactMessage)
                )).scalar_one()
                rows = (await self.db.execute(
                    select(ContactMessage)
                    .order_by(ContactMessage.created_at.desc())
                    .offset(max(0, (page - 1) * page_size))
                    .limit(page_size)
                )).scalars().all()
        return int(total), [_to_item(m) for m in rows]

    async def set_read(self, msg_id: str, read: bool) -> bool:
        async with self.gated():
            async with self.db.begin():
                res = await self.db.execute(
                    update(ContactMessage)
                    .where(ContactMessage.id == msg_id)
                    .values(read=read, status="read" if read else "unread",
                            updated_at=now_ts())
                )
        return res.rowcount > 0

    async def delete_message(self, msg_id: str) -> bool:
        async with self.gated():
            async with self.db.begin():
                res = await self.db.execute(
                    delete(ContactMessage).where(ContactMessage.id == msg_id)
                )
        return res.rowcount > 0
