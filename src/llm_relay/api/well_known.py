"""Служебные эндпоинты: health/metrics."""

from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from llm_relay.metrics import registry

router = APIRouter()


@router.get("/healthz")
def healthz() -> dict:
    """Простой healthcheck: процесс жив."""
    return {"status": "ok"}


@router.get("/metrics")
def metrics() -> Response:
    """Prometheus метрики."""
    data = generate_latest(registry)
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)
