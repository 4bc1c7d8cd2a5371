from aigo.llm.base_llm import BaseLLM, LLMDelta, LLMResponse
from aigo.llm.litellm import LiteLLM

__all__ = ["BaseLLM", "LLMDelta", "LLMResponse", "LiteLLM"]
