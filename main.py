"""
Main application entry point for the ACID demo API.

This module initializes the FastAPI application, configures logging and
CORS, creates the database schema, initializes the rate limiter with a
Redis backend, and includes routers for users, consistency and isolation
demonstrations.

Modules:
- FastAPI: Web framework
- CORSMiddleware: Middleware for handling CORS
- FastAPILimiter: Rate limiting
- redis.asyncio: Async Redis client
- fakeredis: In-process Redis used when no server is reachable
- acid_demo.database: Database engine and schema creation
- acid_demo.users: User workflow router
- acid_demo.consistency: Consistency router
- acid_demo.isolation: Isolation router
- acid_demo.core: Application settings
"""

import logging
from contextlib import asynccontextmanager

from fakeredis.aioredis import FakeRedis
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi_limiter import FastAPILimiter
import redis.asyncio as redis

from acid_demo import consistency, isolation, users
from acid_demo.core import get_settings
from acid_demo.database import engine, init_schema
from acid_demo.logging_config import setup_logging

settings = get_settings()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Configures logging, creates the schema (any failure aborts startup),
    and initializes the rate limiter with Redis, falling back to an
    in-process fake when Redis is unavailable.
    """
    setup_logging(settings.LOG_LEVEL, sql_echo=settings.SQL_ECHO)
    init_schema(engine)

    redis_client = redis.from_url(
        settings.REDIS_URL, encoding="utf-8", decode_responses=True
    )
    try:
        await FastAPILimiter.init(redis_client)
    except Exception as exc:
        logger.warning("Redis unavailable (%s), using in-process rate limiter", exc)
        await FastAPILimiter.init(FakeRedis(decode_responses=True))
    logger.info("ACID demo API started")
    yield
    engine.dispose()


# Initialize FastAPI application
app = FastAPI(title="ACID Demo API", lifespan=lifespan)

# Configure CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers for application areas
app.include_router(users.router)
app.include_router(consistency.router)
app.include_router(isolation.router)


@app.get("/health")
def health():
    """
    Liveness endpoint.

    Returns:
        dict: Static status payload.
    """
    return {"status": "OK", "message": "Server is running"}


@app.get("/")
def root():
    """
    Root endpoint for the API.

    Returns a simple JSON message directing users to the Swagger UI.

    Returns:
        dict: JSON message with information about the API
    """
    return {"msg": "ACID Demo API. Visit /docs for Swagger UI"}
