"""FastAPI приложение (роутеры + логирование)."""

from contextlib import asynccontextmanager

from fastapi import FastAPI

from llm_relay import __version__
from llm_relay.api.v1 import router as v1_router
from llm_relay.api.well_known import router as well_known_router
from llm_relay.infrastructure.logging import configure_logging
from llm_relay.providers.dispatch import close_http_client


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await close_http_client()


def create_app() -> FastAPI:
    """Собирает FastAPI приложение."""
    configure_logging()

    app = FastAPI(title="LLM Relay", version=__version__, lifespan=lifespan)

    app.include_router(well_known_router)
    app.include_router(v1_router, prefix="/v1")
    return app


app = create_app()
