from llm_relay.providers.openai.adaptor import OpenAIAdaptor

__all__ = ["OpenAIAdaptor"]
