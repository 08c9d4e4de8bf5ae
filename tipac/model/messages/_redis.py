from __future__ import annotations
from typing import Any, Dict, List, Tuple
import redis.asyncio as redis

from ...helpers import new_id, now_ts, to_iso


# ---- keys
def k_msg(msg_id: str) -> str: return f"msg:{msg_id}"


MESSAGE_INDEX = "messages"  # zset: id -> created_at


def _to_item(msg_id: str, h: Dict[str, str]) -> Dict[str, Any]:
    try:
        created = float(h.get("created_at", "0"))
    except ValueError:
        created = 0.0
    read = h.get("read") == "1"
    updated = h.get("updated_at")
    return {
        "id": msg_id,
        "name": h.get("name", ""),
        "email": h.get("email", ""),
        "subject": h.get("subject", ""),
        "message": h.get("message", ""),
        "read": read,
        "status": "read" if read else "unread",
        "created_at": to_iso(created),
        "updated_at": to_iso(float(updated)) if updated else None,
    }


class MessageStore:
    def __init__(self, r: redis.Redis) -> None:
        self.r = r

    async def add_message(self, mapping: Dict[str, Any]) -> str:
        msg_id = new_id()
        created = now_ts()
        # values must be strings for decode_responses=True
        pipe = self.r.pipeline(transaction=True)
        pipe.hset(k_msg(msg_id), mapping={
            "name": mapping["name"],
            "email": mapping["email"],
            "subject": mapping["subject"],
            "message": mapping["message"],
            "read": "0",
            "created_at": str(created),
        })
        pipe.zadd(MESSAGE_INDEX, {msg_id: created})
        await pipe.execute()
        return msg_id

    async def list_messages(
        self, page: int = 1, page_size: int = 10
    ) -> Tuple[int, List[Dict[str, Any]]]:
        start = max(0, (page - 1) * page_size)
        total = await self.r.zcard(MESSAGE_INDEX)
        ids = await self.r.zrevrange(MESSAGE_INDEX, start,
                                     start + page_size - 1)
        pipe = self.r.pipeline()
        for msg_id in ids:
            pipe.hgetall(k_msg(msg_id))
        rows = await pipe.execute() if ids else []

        items = []
        for msg_id, h in zip(ids, rows):
            # house-keeping: index entry without a hash
            if not h:
                await self.r.zrem(MESSAGE_INDEX, msg_id)
                continue
            items.append(_to_item(msg_id, h))
        return int(total), items

    async def set_read(self, msg_id: str, read: bool) -> bool:
        if not await self.r.exists(k_msg(msg_id)):
            return False
        await self.r.hset(k_msg(msg_id), mapping={
            "read": "1" if read else "0",
            "updated_at": str(now_ts()),
        })
        return True

    async def delete_message(self, msg_id: str) -> bool:
        pipe = self.r.pipeline(transaction=True)
        pipe.delete(k_msg(msg_id))
        pipe.zrem(MESSAGE_INDEX, msg_id)
        deleted, _ = await pipe.execute()
        return bool(deleted)
