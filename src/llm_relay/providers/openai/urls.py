"""Сборка URL upstream: общий билдер + маленькие резолверы вендоров."""

from __future__ import annotations

from llm_relay.relay.meta import ChannelType, Meta, RelayMode
from llm_relay.services.errors import NotImplementedByAdaptorError

CLOUDFLARE_GATEWAY_PREFIX = "https://gateway.ai.cloudflare.com"


def get_full_request_url(base_url: str, request_url: str, channel_type: ChannelType) -> str:
    """base_url + путь с учётом особенностей OpenAI-compatible и Cloudflare AI Gateway."""
    if channel_type == ChannelType.OPENAI_COMPATIBLE:
        # Для generic-канала `/v1` уже входит в base_url.
        return base_url.rstrip("/") + _trim_prefix(request_url, "/v1")

    full = f"{base_url}{request_url}"
    if base_url.startswith(CLOUDFLARE_GATEWAY_PREFIX):
        if channel_type == ChannelType.OPENAI:
            full = base_url + _trim_prefix(request_url, "/v1")
        elif channel_type == ChannelType.AZURE:
            full = base_url + _trim_prefix(request_url, "/openai/deployments")
    return full


def _trim_prefix(value: str, prefix: str) -> str:
    return value[len(prefix):] if value.startswith(prefix) else value


def _unsupported(meta: Meta) -> NotImplementedByAdaptorError:
    return NotImplementedByAdaptorError(
        f"unsupported relay mode {meta.mode.value} for {meta.channel_type.name.lower()}"
    )


def minimax_request_url(meta: Meta) -> str:
    if meta.mode == RelayMode.CHAT_COMPLETIONS:
        return f"{meta.base_url}/v1/text/chatcompletion_v2"
    raise _unsupported(meta)


def doubao_request_url(meta: Meta) -> str:
    if meta.mode == RelayMode.CHAT_COMPLETIONS:
        # bot-* это приложения (боты) Ark, у них свой путь.
        if meta.actual_model_name.startswith("bot-"):
            return f"{meta.base_url}/api/v3/bots/chat/completions"
        return f"{meta.base_url}/api/v3/chat/completions"
    if meta.mode == RelayMode.EMBEDDINGS:
        return f"{meta.base_url}/api/v3/embeddings"
    raise _unsupported(meta)


def novita_request_url(meta: Meta) -> str:
    if meta.mode == RelayMode.CHAT_COMPLETIONS:
        return f"{meta.base_url}/chat/completions"
    raise _unsupported(meta)


def baidu_v2_request_url(meta: Meta) -> str:
    if meta.mode == RelayMode.CHAT_COMPLETIONS:
        return f"{meta.base_url}/v2/chat/completions"
    raise _unsupported(meta)


def ali_bailian_request_url(meta: Meta) -> str:
    if meta.mode == RelayMode.CHAT_COMPLETIONS:
        return f"{meta.base_url}/compatible-mode/v1/chat/completions"
    if meta.mode == RelayMode.EMBEDDINGS:
        return f"{meta.base_url}/compatible-mode/v1/embeddings"
    raise _unsupported(meta)


def gemini_openai_compatible_request_url(meta: Meta) -> str:
    path = meta.request_url_path.split("?", 1)[0]
    return f"{meta.base_url}/v1beta/openai/{_trim_prefix(path, '/v1/')}"


VENDOR_URL_RESOLVERS = {
    ChannelType.MINIMAX: minimax_request_url,
    ChannelType.DOUBAO: doubao_request_url,
    ChannelType.NOVITA: novita_request_url,
    ChannelType.BAIDU_V2: baidu_v2_request_url,
    ChannelType.ALI_BAILIAN: ali_bailian_request_url,
    ChannelType.GEMINI_OPENAI_COMPATIBLE: gemini_openai_compatible_request_url,
}
