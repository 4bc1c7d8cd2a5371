"""Lightweight async LLM interfaces used by the reasoning loop."""
from __future__ import annotations

import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Union

from aigo.reasoner.messages import Content, Message, Text, ToolCallRequest
from aigo.reasoner.normalize import extract_text

from utils.logger import get_logger
logger = get_logger(__name__)


@dataclass
class LLMDelta:
    """A streamed text fragment."""
    text: str


@dataclass
class LLMResponse:
    text: Content = field(default_factory=Text)
    tool_calls: List[ToolCallRequest] = field(default_factory=list)
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    total_tokens: Optional[int] = None

    @property
    def text_value(self) -> str:
        return extract_text(self.text)

    def to_message(self) -> Message:
        return Message.assistant(self.text, self.tool_calls)


StreamItem = Union[LLMDelta, LLMResponse]


class BaseLLM(ABC):
    """Minimal async chat-LLM interface.

    • Accepts a list[dict] *messages* in the OpenAI Chat format.
    • ``tools`` are OpenAI function definitions bound for this call.
    • Implementations SHOULD be stateless; auth + model name given at init.
    """

    def __init__(self, model: str | None = None, temperature: float | None = None) -> None:
        self.model = model or os.getenv("LLM_MODEL")
        if not self.model:
            raise ValueError("No model configured. Pass model= or set LLM_MODEL.")
        self.temperature = temperature

    @abstractmethod
    async def acompletion(
        self,
        messages: List[Dict[str, Any]],
        *,
        tools: Optional[List[Dict[str, Any]]] = None,
        **kwargs: Any,
    ) -> LLMResponse: ...

    async def astream(
        self,
        messages: List[Dict[str, Any]],
        *,
        tools: Optional[List[Dict[str, Any]]] = None,
        **kwargs: Any,
    ) -> AsyncIterator[StreamItem]:
        """Yield ``LLMDelta`` fragments followed by exactly one ``LLMResponse``.

        Default implementation makes a single non-streaming call.
        """
        response = await self.acompletion(messages, tools=tools, **kwargs)
        if response.text_value:
            yield LLMDelta(response.text_value)
        yield response
