"""Фабрика адаптеров: закрытый набор ChannelType -> Adaptor."""

from llm_relay.providers.ali import AliAdaptor
from llm_relay.providers.base import Adaptor
from llm_relay.providers.openai import OpenAIAdaptor
from llm_relay.providers.openai.constants import COMPATIBLE_CHANNELS
from llm_relay.providers.proxy import ProxyAdaptor
from llm_relay.relay.meta import ChannelType
from llm_relay.settings import get_settings


def get_adaptor(channel_type: ChannelType) -> Adaptor:
    """Новый адаптер на вызов (у адаптеров есть per-call состояние)."""
    if channel_type == ChannelType.ALI:
        settings = get_settings()
        return AliAdaptor(
            poll_interval=settings.ali_image_poll_interval_seconds,
            poll_max_attempts=settings.ali_image_poll_max_attempts,
        )
    if channel_type == ChannelType.PROXY:
        return ProxyAdaptor()
    if channel_type in COMPATIBLE_CHANNELS:
        return OpenAIAdaptor(channel_type)
    raise ValueError(f"Unknown channel type: {channel_type}")
