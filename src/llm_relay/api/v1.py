"""v1 роутер: собирает эндпоинты в один APIRouter."""

from fastapi import APIRouter

from llm_relay.api.v1_models import router as models_router
from llm_relay.api.v1_relay import router as relay_router

router = APIRouter()
router.include_router(relay_router)
router.include_router(models_router)
