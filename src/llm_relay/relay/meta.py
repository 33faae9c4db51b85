"""Контекст вызова: тип канала, режим relay и неизменяемая Meta."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum


class ChannelType(IntEnum):
    """Тип канала (какой upstream-провайдер стоит за ключом)."""

    OPENAI = 1
    AZURE = 3
    OPENAI_COMPATIBLE = 8
    ALI = 17
    OPENROUTER = 20
    MINIMAX = 27
    MISTRAL = 28
    GROQ = 29
    DEEPSEEK = 36
    TOGETHER = 39
    DOUBAO = 40
    NOVITA = 41
    XAI = 44
    BAIDU_V2 = 47
    ALI_BAILIAN = 49
    GEMINI_OPENAI_COMPATIBLE = 50
    PROXY = 51

    @classmethod
    def from_name(cls, name: str) -> ChannelType:
        """`openai`, `azure`, `openrouter`, ... -> ChannelType (регистр и `-` не важны)."""
        key = name.strip().upper().replace("-", "_")
        try:
            return cls[key]
        except KeyError:
            raise ValueError(f"Unknown channel type: {name}") from None


# Базовые URL по умолчанию (если у канала не задан свой).
DEFAULT_BASE_URLS: dict[ChannelType, str] = {
    ChannelType.OPENAI: "https://api.openai.com",
    ChannelType.ALI: "https://dashscope.aliyuncs.com",
    ChannelType.OPENROUTER: "https://openrouter.ai/api",
    ChannelType.MINIMAX: "https://api.minimax.chat",
    ChannelType.MISTRAL: "https://api.mistral.ai",
    ChannelType.GROQ: "https://api.groq.com/openai",
    ChannelType.DEEPSEEK: "https://api.deepseek.com",
    ChannelType.TOGETHER: "https://api.together.xyz",
    ChannelType.DOUBAO: "https://ark.cn-beijing.volces.com",
    ChannelType.NOVITA: "https://api.novita.ai/v3/openai",
    ChannelType.XAI: "https://api.x.ai",
    ChannelType.BAIDU_V2: "https://qianfan.baidubce.com",
    ChannelType.ALI_BAILIAN: "https://dashscope.aliyuncs.com",
    ChannelType.GEMINI_OPENAI_COMPATIBLE: "https://generativelanguage.googleapis.com",
}


class RelayMode(str, Enum):
    """Категория операции (по пути входящего запроса)."""

    UNKNOWN = "unknown"
    CHAT_COMPLETIONS = "chat_completions"
    COMPLETIONS = "completions"
    EMBEDDINGS = "embeddings"
    MODERATIONS = "moderations"
    IMAGES_GENERATIONS = "images_generations"
    IMAGES_EDITS = "images_edits"
    EDITS = "edits"
    AUDIO_SPEECH = "audio_speech"
    AUDIO_TRANSCRIPTION = "audio_transcription"
    AUDIO_TRANSLATION = "audio_translation"
    RESPONSE_API = "response_api"
    PROXY = "proxy"


_PATH_PREFIXES: list[tuple[str, RelayMode]] = [
    ("/v1/oneapi/proxy", RelayMode.PROXY),
    ("/v1/chat/completions", RelayMode.CHAT_COMPLETIONS),
    ("/v1/completions", RelayMode.COMPLETIONS),
    ("/v1/embeddings", RelayMode.EMBEDDINGS),
    ("/v1/moderations", RelayMode.MODERATIONS),
    ("/v1/images/generations", RelayMode.IMAGES_GENERATIONS),
    ("/v1/images/edits", RelayMode.IMAGES_EDITS),
    ("/v1/edits", RelayMode.EDITS),
    ("/v1/audio/speech", RelayMode.AUDIO_SPEECH),
    ("/v1/audio/transcriptions", RelayMode.AUDIO_TRANSCRIPTION),
    ("/v1/audio/translations", RelayMode.AUDIO_TRANSLATION),
    ("/v1/responses", RelayMode.RESPONSE_API),
]


def relay_mode_from_path(path: str) -> RelayMode:
    """Определяет режим по пути входящего запроса."""
    for prefix, mode in _PATH_PREFIXES:
        if path.startswith(prefix):
            return mode
    # /v1/engines/{model}/embeddings и прочие вариации embeddings
    if path.startswith("/v1/engines") and path.endswith("/embeddings"):
        return RelayMode.EMBEDDINGS
    return RelayMode.UNKNOWN


@dataclass(frozen=True)
class ChannelConfig:
    """Провайдер-специфичная конфигурация канала."""

    api_version: str = ""
    plugin: str = ""


@dataclass(frozen=True)
class Meta:
    """Неизменяемый контекст одного вызова (создаётся слоем маршрутизации)."""

    channel_type: ChannelType
    base_url: str
    api_key: str
    mode: RelayMode = RelayMode.CHAT_COMPLETIONS
    channel_id: int = 0
    is_stream: bool = False
    origin_model_name: str = ""
    actual_model_name: str = ""
    request_url_path: str = "/v1/chat/completions"
    prompt_tokens: int = 0
    config: ChannelConfig = field(default_factory=ChannelConfig)


def resolve_model_name(model: str, mapping: dict[str, str] | None) -> str:
    """Маппинг модели канала: входящее имя -> имя у upstream (если задано)."""
    if not mapping:
        return model
    mapped = mapping.get(model)
    return mapped if mapped else model
