import json
from uuid import UUID

from loguru import logger
from redis.asyncio import Redis

from app.settings import REDIS_URL

_redis: Redis | None = None
LEDGER_TTL = 300  # 5 minutes


def get_redis() -> Redis:
    global _redis
    if _redis is None:
        _redis = Redis.from_url(REDIS_URL, decode_responses=True)
    return _redis


def _ledger_key(provider_id: UUID) -> str:
    return f"ledger:{provider_id}"


async def get_ledger_cache(provider_id: UUID) -> dict | None:
    try:
        data = await get_redis().get(_ledger_key(provider_id))
        return json.loads(data) if data else None
    except Exception:
        logger.opt(exception=True).warning("Redis get failed — skipping ledger cache")
        return None


async def set_ledger_cache(provider_id: UUID, ledger: dict) -> None:
    try:
        await get_redis().setex(_ledger_key(provider_id), LEDGER_TTL, json.dumps(ledger))
    except Exception:
        logger.opt(exception=True).warning("Redis set failed — skipping ledger cache")


async def invalidate_ledger_cache(provider_id: UUID | None) -> None:
    if provider_id is None:
        return
    try:
        await get_redis().delete(_ledger_key(provider_id))
    except Exception:
        logger.opt(exception=True).warning("Redis invalidate failed for ledger cache")
