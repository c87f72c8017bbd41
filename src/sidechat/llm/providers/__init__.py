from .openai_compat import OpenAICompatibleService

__all__ = ["OpenAICompatibleService"]
