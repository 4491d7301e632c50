from fastapi import Request
import redis.asyncio as redis

from personalization.engine import PersonalizationEngine


async def get_redis_client(request: Request) -> redis.Redis:
    return request.app.state.redis_client


async def get_engine(request: Request) -> PersonalizationEngine:
    return request.app.state.engine
