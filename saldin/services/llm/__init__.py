from saldin.services.llm.base import LLMError, LLMProvider, LLMResponse
from saldin.services.llm.openai_provider import OpenAIProvider

__all__ = ["LLMError", "LLMProvider", "LLMResponse", "OpenAIProvider"]
