"""Эндпоинт `/v1/models`: модели настроенного канала (из таблиц адаптера)."""

import time

from fastapi import APIRouter

from llm_relay.providers.factory import get_adaptor
from llm_relay.relay.meta import ChannelType
from llm_relay.settings import get_settings

router = APIRouter()


@router.get("/models")
def list_models() -> dict:
    settings = get_settings()
    adaptor = get_adaptor(ChannelType.from_name(settings.channel_type))
    owner = adaptor.get_channel_name()
    created = int(time.time())
    return {
        "object": "list",
        "data": [
            {"id": name, "object": "model", "created": created, "owned_by": owner}
            for name in adaptor.get_model_list()
        ],
    }
