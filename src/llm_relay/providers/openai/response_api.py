"""Формат Response API: перевод chat-запроса туда и ответа обратно в chat."""

from __future__ import annotations

import time
from typing import Any

from pydantic import BaseModel, ConfigDict, PrivateAttr

from llm_relay.relay.model import GeneralOpenAIRequest, Message, Usage


class ResponseAPIRequest(BaseModel):
    """Запрос `/v1/responses` (неизвестные поля сохраняем)."""

    model_config = ConfigDict(extra="allow")

    model: str = ""
    input: str | list[dict[str, Any]] | None = None
    instructions: str | None = None
    max_output_tokens: int | None = None
    temperature: float | None = None
    top_p: float | None = None
    stream: bool | None = None
    tools: list[dict[str, Any]] | None = None
    tool_choice: str | dict[str, Any] | None = None
    parallel_tool_calls: bool | None = None
    user: str | None = None
    metadata: dict[str, Any] | None = None
    store: bool | None = None
    reasoning: dict[str, Any] | None = None
    text: dict[str, Any] | None = None
    # не уходит upstream: нужно, чтобы решить, отдавать ли usage-чанк клиенту
    _include_usage: bool = PrivateAttr(default=False)

    @property
    def include_usage(self) -> bool:
        return self._include_usage

    def is_structured_output(self) -> bool:
        fmt = (self.text or {}).get("format") or {}
        return fmt.get("type") == "json_schema"


def _content_parts(content: Any, text_type: str) -> list[dict[str, Any]]:
    if isinstance(content, str):
        return [{"type": text_type, "text": content}]
    parts: list[dict[str, Any]] = []
    for part in content or []:
        if not isinstance(part, dict):
            continue
        kind = part.get("type")
        if kind == "text":
            parts.append({"type": text_type, "text": part.get("text") or ""})
        elif kind == "image_url":
            image = part.get("image_url") or {}
            url = image.get("url") if isinstance(image, dict) else image
            item: dict[str, Any] = {"type": "input_image", "image_url": url}
            if isinstance(image, dict) and image.get("detail"):
                item["detail"] = image["detail"]
            parts.append(item)
        else:
            parts.append(part)
    return parts


def _message_to_input_items(msg: Message) -> list[dict[str, Any]]:
    if msg.role == "tool":
        return [
            {
                "type": "function_call_output",
                "call_id": msg.tool_call_id or "",
                "output": msg.string_content(),
            }
        ]

    items: list[dict[str, Any]] = []
    if msg.role == "assistant":
        if msg.content:
            items.append(
                {"role": "assistant", "content": _content_parts(msg.content, "output_text")}
            )
        for call in msg.tool_calls or []:
            items.append(
                {
                    "type": "function_call",
                    "call_id": call.id,
                    "name": call.function.name,
                    "arguments": call.function.arguments,
                }
            )
        return items

    return [{"role": msg.role, "content": _content_parts(msg.content, "input_text")}]


def _convert_tools(tools: list[dict[str, Any]] | None) -> list[dict[str, Any]] | None:
    if not tools:
        return None
    out = []
    for tool in tools:
        fn = tool.get("function")
        if tool.get("type") == "function" and isinstance(fn, dict):
            flat = {"type": "function", "name": fn.get("name", "")}
            for key in ("description", "parameters", "strict"):
                if fn.get(key) is not None:
                    flat[key] = fn[key]
            out.append(flat)
        else:
            out.append(tool)
    return out


def _convert_tool_choice(choice: str | dict[str, Any] | None) -> str | dict[str, Any] | None:
    if isinstance(choice, dict) and choice.get("type") == "function":
        fn = choice.get("function") or {}
        return {"type": "function", "name": fn.get("name", "")}
    return choice


def convert_chat_completion_to_response_api(request: GeneralOpenAIRequest) -> ResponseAPIRequest:
    """Chat-completions запрос -> запрос Response API (исходный объект не меняем)."""
    instructions: list[str] = []
    items: list[dict[str, Any]] = []
    for msg in request.messages or []:
        if msg.role in ("system", "developer"):
            instructions.append(msg.string_content())
            continue
        items.extend(_message_to_input_items(msg))

    text = None
    fmt = request.response_format
    if fmt is not None and fmt.type == "json_schema" and fmt.json_schema is not None:
        schema_format: dict[str, Any] = {
            "type": "json_schema",
            "name": fmt.json_schema.name,
        }
        if fmt.json_schema.schema_ is not None:
            schema_format["schema"] = fmt.json_schema.schema_
        if fmt.json_schema.description:
            schema_format["description"] = fmt.json_schema.description
        if fmt.json_schema.strict is not None:
            schema_format["strict"] = fmt.json_schema.strict
        text = {"format": schema_format}
    elif fmt is not None and fmt.type == "json_object":
        text = {"format": {"type": "json_object"}}

    reasoning = None
    if request.reasoning_effort:
        reasoning = {"effort": request.reasoning_effort, "summary": "auto"}

    converted = ResponseAPIRequest(
        model=request.model,
        input=items,
        instructions="\n\n".join(instructions) or None,
        max_output_tokens=request.max_completion_tokens or request.max_tokens or None,
        temperature=request.temperature,
        top_p=request.top_p,
        stream=request.stream or None,
        tools=_convert_tools(request.tools),
        tool_choice=_convert_tool_choice(request.tool_choice),
        parallel_tool_calls=request.parallel_tool_calls,
        user=request.user,
        metadata=request.metadata,
        store=False,
        reasoning=reasoning,
        text=text,
    )
    converted._include_usage = bool(
        request.stream_options and request.stream_options.include_usage
    )
    return converted


def usage_from_response_api(raw: dict[str, Any] | None) -> Usage:
    """`input_tokens/output_tokens` -> Usage."""
    raw = raw or {}
    prompt = int(raw.get("input_tokens") or 0)
    completion = int(raw.get("output_tokens") or 0)
    total = int(raw.get("total_tokens") or 0) or prompt + completion
    return Usage(prompt_tokens=prompt, completion_tokens=completion, total_tokens=total)


def _usage_payload(usage: Usage) -> dict[str, int]:
    return {
        "prompt_tokens": usage.prompt_tokens,
        "completion_tokens": usage.completion_tokens,
        "total_tokens": usage.total_tokens,
    }


def _finish_reason(response: dict[str, Any], has_tool_calls: bool) -> str:
    if has_tool_calls:
        return "tool_calls"
    details = response.get("incomplete_details") or {}
    if response.get("status") == "incomplete" and details.get("reason") == "max_output_tokens":
        return "length"
    return "stop"


def convert_response_api_to_chat_completion(data: dict[str, Any]) -> dict[str, Any]:
    """Буферизованный ответ Response API -> `chat.completion`."""
    texts: list[str] = []
    reasoning: list[str] = []
    tool_calls: list[dict[str, Any]] = []
    for item in data.get("output") or []:
        kind = item.get("type")
        if kind == "message":
            for part in item.get("content") or []:
                if part.get("type") == "output_text":
                    texts.append(part.get("text") or "")
        elif kind == "reasoning":
            for part in item.get("summary") or []:
                reasoning.append(part.get("text") or "")
        elif kind == "function_call":
            tool_calls.append(
                {
                    "id": item.get("call_id") or item.get("id") or "",
                    "type": "function",
                    "function": {
                        "name": item.get("name") or "",
                        "arguments": item.get("arguments") or "",
                    },
                }
            )

    message: dict[str, Any] = {"role": "assistant", "content": "".join(texts)}
    if reasoning:
        message["reasoning_content"] = "\n".join(reasoning)
    if tool_calls:
        message["tool_calls"] = tool_calls

    usage = usage_from_response_api(data.get("usage"))
    return {
        "id": data.get("id") or "",
        "object": "chat.completion",
        "created": int(data.get("created_at") or time.time()),
        "model": data.get("model") or "",
        "choices": [
            {
                "index": 0,
                "message": message,
                "finish_reason": _finish_reason(data, bool(tool_calls)),
            }
        ],
        "usage": _usage_payload(usage),
    }


class ResponseAPIStreamConverter:
    """События стрима Response API -> чанки `chat.completion.chunk`.

    Копит usage и текст ответа (для оценки токенов, если usage не придёт).
    """

    def __init__(self, include_usage: bool = False) -> None:
        self.include_usage = include_usage
        self.id = ""
        self.model = ""
        self.created = int(time.time())
        self.usage: Usage | None = None
        self.text_parts: list[str] = []
        self._tool_index: dict[str, int] = {}

    @property
    def response_text(self) -> str:
        return "".join(self.text_parts)

    def _chunk(self, delta: dict[str, Any], finish_reason: str | None = None) -> dict[str, Any]:
        return {
            "id": self.id,
            "object": "chat.completion.chunk",
            "created": self.created,
            "model": self.model,
            "choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}],
        }

    def convert(self, event: dict[str, Any]) -> list[dict[str, Any]]:
        kind = event.get("type") or ""

        if kind == "response.created":
            response = event.get("response") or {}
            self.id = response.get("id") or self.id
            self.model = response.get("model") or self.model
            self.created = int(response.get("created_at") or self.created)
            return [self._chunk({"role": "assistant", "content": ""})]

        if kind == "response.output_text.delta":
            delta = event.get("delta") or ""
            self.text_parts.append(delta)
            return [self._chunk({"content": delta})]

        if kind == "response.reasoning_summary_text.delta":
            delta = event.get("delta") or ""
            self.text_parts.append(delta)
            return [self._chunk({"reasoning_content": delta})]

        if kind == "response.output_item.added":
            item = event.get("item") or {}
            if item.get("type") != "function_call":
                return []
            index = len(self._tool_index)
            self._tool_index[item.get("id") or ""] = index
            self.text_parts.append(item.get("name") or "")
            call = {
                "index": index,
                "id": item.get("call_id") or "",
                "type": "function",
                "function": {"name": item.get("name") or "", "arguments": ""},
            }
            return [self._chunk({"tool_calls": [call]})]

        if kind == "response.function_call_arguments.delta":
            index = self._tool_index.get(event.get("item_id") or "", 0)
            delta = event.get("delta") or ""
            self.text_parts.append(delta)
            call = {"index": index, "function": {"arguments": delta}}
            return [self._chunk({"tool_calls": [call]})]

        if kind in ("response.completed", "response.incomplete"):
            response = event.get("response") or {}
            if response.get("usage"):
                self.usage = usage_from_response_api(response["usage"])
            chunks = [self._chunk({}, _finish_reason(response, bool(self._tool_index)))]
            if self.include_usage and self.usage is not None:
                usage_chunk = self._chunk({})
                usage_chunk["choices"] = []
                usage_chunk["usage"] = _usage_payload(self.usage)
                chunks.append(usage_chunk)
            return chunks

        return []
