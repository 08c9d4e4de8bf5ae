from typing import Optional, Union
from sqlalchemy.ext.asyncio import AsyncSession
import redis.asyncio as redis

from ...infra.sql import Gated
from ._postgres import MessageStore as PgMessageStore
from ._redis import MessageStore as RedisMessageStore

MessageStore = Union[PgMessageStore, RedisMessageStore]

BACKENDS = ("redis", "pg")


# Factory keeps server.py constructor-agnostic:
def new_store(backend: str, *, db: Optional[AsyncSession] = None,
              r: Optional[redis.Redis] = None,
              gated: Optional[Gated] = None) -> MessageStore:
    if backend == "pg":
        if db is None:
            raise RuntimeError(
                "MessageStore(pg) requires db=AsyncSession"
            )
        if gated is None:
            raise RuntimeError(
                "MessageStore(pg) requires gated=Gated"
            )
        return PgMessageStore(db=db, gated=gated)
    if backend == "redis":
        if r is None:
            raise RuntimeError(
                "MessageStore(redis) requires r=redis.Redis"
            )
        return RedisMessageStore(r=r)
    raise RuntimeError(f"unknown MESSAGES_BACKEND {backend!r}")


__all__ = ["MessageStore", "new_store", "BACKENDS"]
