"""Ошибки relay: таксономия, разбор ошибок upstream, JSON для клиента."""

from __future__ import annotations

import json
from typing import Any

import httpx


class RelayError(Exception):
    """Ошибка вызова со статусом (возвращается слою маршрутизации)."""

    status_code: int = 500
    code: str = "relay_error"
    type: str = "gateway_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        code: str | None = None,
        type: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code
        if type is not None:
            self.type = type


class InvalidRequestError(RelayError):
    """Некорректный запрос (отклоняется до обращения к upstream, без биллинга)."""

    status_code = 400
    code = "invalid_request"
    type = "invalid_request_error"


class NotImplementedByAdaptorError(RelayError):
    """Возможность не поддерживается этим адаптером."""

    status_code = 501
    code = "not_implemented"


class ConfigurationError(RelayError):
    """Не выполнено условие точного биллинга/конфигурации канала."""

    status_code = 500
    code = "configuration_error"


class UpstreamTransportError(RelayError):
    """Сеть/копирование тела упало: отдаём как внутреннюю ошибку с текстом причины."""

    status_code = 500
    code = "upstream_transport_error"
    type = "upstream_error"


class UpstreamStatusError(RelayError):
    """Upstream ответил ошибкой; статус и текст сохраняем."""

    type = "upstream_error"


def _text(body: bytes) -> str:
    return body.decode("utf-8", errors="replace").strip()


def relay_error_from_response(status_code: int, body: bytes) -> RelayError:
    """Разбирает тело ошибки upstream.

    Понимает общий конверт `{"error": {"message", "type", "code"}}` и плоский
    `{"code", "message"}` (DashScope). Иначе 500 с сырым телом в сообщении.
    """
    try:
        data: Any = json.loads(body) if body else None
    except ValueError:
        data = None

    if isinstance(data, dict):
        err = data.get("error")
        if isinstance(err, dict) and err.get("message"):
            code = err.get("code")
            return UpstreamStatusError(
                str(err["message"]),
                status_code=status_code,
                code=str(code) if code else f"upstream_{status_code}",
                type=str(err.get("type") or "upstream_error"),
            )
        if isinstance(err, str) and err:
            return UpstreamStatusError(err, status_code=status_code, code=f"upstream_{status_code}")
        if data.get("message") and data.get("code"):
            return UpstreamStatusError(
                str(data["message"]),
                status_code=status_code,
                code=str(data["code"]),
            )

    text = _text(body) or f"upstream returned status {status_code}"
    return RelayError(text, status_code=500, code=f"upstream_{status_code}", type="upstream_error")


def map_transport_exception(exc: Exception) -> RelayError:
    """httpx-исключение -> RelayError (сообщение upstream сохраняем)."""
    if isinstance(exc, RelayError):
        return exc
    if isinstance(exc, httpx.TimeoutException):
        return UpstreamTransportError(f"upstream timeout: {exc}", code="upstream_timeout")
    if isinstance(exc, httpx.TransportError):
        return UpstreamTransportError(f"upstream unreachable: {exc}")
    return UpstreamTransportError(str(exc) or type(exc).__name__)


def error_payload(err: RelayError) -> dict:
    """Формирует JSON `{error:{...}}` для клиента."""
    return {"error": {"code": err.code, "message": err.message, "type": err.type}}
