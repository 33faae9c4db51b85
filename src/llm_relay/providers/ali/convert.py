"""Конвертация запросов/ответов между форматом OpenAI и нативным DashScope."""

from __future__ import annotations

import time
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from llm_relay.providers.ali.constants import DEFAULT_IMAGE_SIZE, ENABLE_SEARCH_MODEL_SUFFIX
from llm_relay.relay.model import GeneralOpenAIRequest, ImageRequest, Usage


class _Ali(BaseModel):
    model_config = ConfigDict(extra="allow")


class AliMessage(_Ali):
    role: str
    content: Any = None
    name: str | None = None
    tool_calls: list[dict[str, Any]] | None = None
    tool_call_id: str | None = None


class AliInput(_Ali):
    messages: list[AliMessage] = Field(default_factory=list)


class AliParameters(_Ali):
    result_format: str = "message"
    incremental_output: bool | None = None
    enable_search: bool | None = None
    seed: int | None = None
    max_tokens: int | None = None
    temperature: float | None = None
    top_p: float | None = None
    top_k: int | None = None
    stop: str | list[str] | None = None
    tools: list[dict[str, Any]] | None = None


class AliChatRequest(_Ali):
    model: str
    input: AliInput
    parameters: AliParameters


class AliEmbeddingRequest(_Ali):
    model: str
    input: dict[str, list[str]]
    parameters: dict[str, Any] | None = None


class AliImageRequest(_Ali):
    model: str
    input: dict[str, Any]
    parameters: dict[str, Any]
    response_format: str | None = Field(default=None, exclude=True)


def convert_request(request: GeneralOpenAIRequest) -> AliChatRequest:
    model = request.model
    enable_search = None
    if model.endswith(ENABLE_SEARCH_MODEL_SUFFIX):
        enable_search = True
        model = model[: -len(ENABLE_SEARCH_MODEL_SUFFIX)]

    messages = [
        AliMessage(
            role=m.role,
            content=m.content,
            name=m.name,
            tool_calls=[c.model_dump() for c in m.tool_calls] if m.tool_calls else None,
            tool_call_id=m.tool_call_id,
        )
        for m in request.messages or []
    ]
    # DashScope top_p строго меньше 1
    top_p = request.top_p
    if top_p is not None and top_p >= 1:
        top_p = 0.9999

    return AliChatRequest(
        model=model,
        input=AliInput(messages=messages),
        parameters=AliParameters(
            result_format="message",
            incremental_output=True if request.stream else None,
            enable_search=enable_search,
            seed=request.seed,
            max_tokens=request.max_tokens,
            temperature=request.temperature,
            top_p=top_p,
            top_k=request.top_k,
            stop=request.stop,
            tools=request.tools,
        ),
    )


def convert_embedding_request(request: GeneralOpenAIRequest) -> AliEmbeddingRequest:
    return AliEmbeddingRequest(
        model=request.model,
        input={"texts": request.parse_input()},
        parameters={"text_type": "query"},
    )


def convert_image_request(request: ImageRequest) -> AliImageRequest:
    size = (request.size or "").replace("x", "*") or DEFAULT_IMAGE_SIZE
    return AliImageRequest(
        model=request.model,
        input={"prompt": request.prompt},
        parameters={"size": size, "n": request.n or 1},
        response_format=request.response_format,
    )


def usage_from_ali(raw: dict[str, Any] | None) -> Usage:
    raw = raw or {}
    prompt = int(raw.get("input_tokens") or 0)
    completion = int(raw.get("output_tokens") or 0)
    total = int(raw.get("total_tokens") or 0) or prompt + completion
    return Usage(prompt_tokens=prompt, completion_tokens=completion, total_tokens=total)


def _choices(data: dict[str, Any]) -> list[dict[str, Any]]:
    return (data.get("output") or {}).get("choices") or []


def response_to_openai(data: dict[str, Any], model: str) -> dict[str, Any]:
    """Ответ DashScope (result_format=message) -> `chat.completion`."""
    choices = []
    for index, choice in enumerate(_choices(data)):
        choices.append(
            {
                "index": index,
                "message": choice.get("message") or {"role": "assistant", "content": ""},
                "finish_reason": choice.get("finish_reason") or "stop",
            }
        )
    usage = usage_from_ali(data.get("usage"))
    return {
        "id": data.get("request_id") or "",
        "object": "chat.completion",
        "created": int(time.time()),
        "model": model,
        "choices": choices,
        "usage": {
            "prompt_tokens": usage.prompt_tokens,
            "completion_tokens": usage.completion_tokens,
            "total_tokens": usage.total_tokens,
        },
    }


def stream_response_to_openai(data: dict[str, Any], model: str) -> dict[str, Any] | None:
    """Чанк стрима DashScope -> `chat.completion.chunk` (None, если нет choices)."""
    choices = _choices(data)
    if not choices:
        return None
    choice = choices[0]
    finish_reason = choice.get("finish_reason")
    if finish_reason in ("null", ""):
        finish_reason = None
    return {
        "id": data.get("request_id") or "",
        "object": "chat.completion.chunk",
        "created": int(time.time()),
        "model": model,
        "choices": [
            {
                "index": 0,
                "delta": choice.get("message") or {},
                "finish_reason": finish_reason,
            }
        ],
    }


def embedding_response_to_openai(data: dict[str, Any], model: str) -> dict[str, Any]:
    embeddings = (data.get("output") or {}).get("embeddings") or []
    usage = data.get("usage") or {}
    total = int(usage.get("total_tokens") or 0)
    return {
        "object": "list",
        "data": [
            {
                "object": "embedding",
                "index": item.get("text_index", index),
                "embedding": item.get("embedding") or [],
            }
            for index, item in enumerate(embeddings)
        ],
        "model": model,
        "usage": {"prompt_tokens": total, "total_tokens": total},
    }
