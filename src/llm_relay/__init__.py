"""LLM Relay: слой адаптации провайдеров (запрос -> upstream -> usage)."""

__version__ = "0.1.0"
