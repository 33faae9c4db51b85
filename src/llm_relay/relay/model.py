"""Модели запроса/ответа (провайдер-независимые, без поведения)."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class _Wire(BaseModel):
    """Базовая модель для JSON на проводе: неизвестные поля сохраняем."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)


class ImageURL(_Wire):
    url: str = ""
    detail: str | None = None


class ToolCallFunction(_Wire):
    name: str = ""
    arguments: str = ""


class ToolCall(_Wire):
    id: str = ""
    type: str = "function"
    function: ToolCallFunction = Field(default_factory=ToolCallFunction)


class Message(_Wire):
    role: str
    content: str | list[dict[str, Any]] | None = None
    name: str | None = None
    tool_calls: list[ToolCall] | None = None
    tool_call_id: str | None = None
    reasoning_content: str | None = None

    def string_content(self) -> str:
        """Текст сообщения (для мультимодального content склеиваем text-части)."""
        if isinstance(self.content, str):
            return self.content
        if isinstance(self.content, list):
            parts = []
            for part in self.content:
                if isinstance(part, dict) and part.get("type") == "text":
                    parts.append(str(part.get("text") or ""))
            return "".join(parts)
        return ""


class StreamOptions(_Wire):
    include_usage: bool = False


class RequestProvider(_Wire):
    """Предпочтения провайдера (OpenRouter)."""

    order: list[str] | None = None
    sort: str = ""


class JSONSchema(_Wire):
    name: str = ""
    description: str | None = None
    schema_: dict[str, Any] | None = Field(default=None, alias="schema")
    strict: bool | None = None


class ResponseFormat(_Wire):
    type: str = "text"
    json_schema: JSONSchema | None = None


class WebSearchOptions(_Wire):
    search_context_size: str | None = None
    user_location: dict[str, Any] | None = None


class GeneralOpenAIRequest(_Wire):
    """Канонический запрос (OpenAI chat/completions/embeddings/responses)."""

    messages: list[Message] | None = None
    model: str = ""
    frequency_penalty: float | None = None
    presence_penalty: float | None = None
    max_tokens: int | None = None
    max_completion_tokens: int | None = None
    n: int | None = None
    response_format: ResponseFormat | None = None
    seed: int | None = None
    stop: str | list[str] | None = None
    stream: bool = False
    stream_options: StreamOptions | None = None
    temperature: float | None = None
    top_p: float | None = None
    top_k: int | None = None
    tools: list[dict[str, Any]] | None = None
    tool_choice: str | dict[str, Any] | None = None
    parallel_tool_calls: bool | None = None
    user: str | None = None
    reasoning_effort: str | None = None
    include_reasoning: bool | None = None
    provider: RequestProvider | None = None
    web_search_options: WebSearchOptions | None = None
    # embeddings / responses
    input: Any = None
    instructions: str | None = None
    encoding_format: str | None = None
    dimensions: int | None = None
    modalities: list[str] | None = None
    audio: dict[str, Any] | None = None
    metadata: dict[str, Any] | None = None
    store: bool | None = None

    def parse_input(self) -> list[str]:
        """`input` embeddings-запроса как список строк."""
        if self.input is None:
            return []
        if isinstance(self.input, str):
            return [self.input]
        if isinstance(self.input, list):
            return [item for item in self.input if isinstance(item, str)]
        return []


class ImageRequest(_Wire):
    model: str = ""
    prompt: str = ""
    n: int | None = None
    size: str | None = None
    quality: str | None = None
    response_format: str | None = None
    style: str | None = None
    user: str | None = None


class Usage(_Wire):
    """Учётная запись вызова: токены + стоимость инструментов (в квоте)."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    tools_cost: int = 0

    def is_empty(self) -> bool:
        return self.total_tokens == 0


class ErrorBody(_Wire):
    """Общий конверт ошибки `{"error": {...}}`."""

    message: str = ""
    type: str | None = None
    param: str | None = None
    code: Any = None
