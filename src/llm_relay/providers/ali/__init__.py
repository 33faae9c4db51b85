from llm_relay.providers.ali.adaptor import AliAdaptor

__all__ = ["AliAdaptor"]
