from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger
from tortoise.contrib.fastapi import RegisterTortoise

from app import settings
from app.exceptions import register_exception_handlers
from app.routers import booking, provider

TORTOISE_MODULES = {"models": ["app.models"]}


@asynccontextmanager
async def lifespan(app: FastAPI):
    async with RegisterTortoise(
        app,
        db_url=settings.db_url,
        modules=TORTOISE_MODULES,
        generate_schemas=True,
    ):
        logger.info("bookings-ms started: db={}", settings.db_url.split("://")[0])
        yield


def create_app() -> FastAPI:
    app = FastAPI(title="bookings-ms", lifespan=lifespan)
    register_exception_handlers(app)
    app.include_router(booking.router)
    app.include_router(provider.router)
    return app


app = create_app()
