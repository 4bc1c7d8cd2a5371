from __future__ import annotations

from typing import Any, AsyncIterator, Dict, List, Optional
from uuid import uuid4

import litellm

from aigo.llm.base_llm import BaseLLM, LLMDelta, LLMResponse, StreamItem
from aigo.reasoner.messages import Content, ToolCallRequest
from utils.logger import get_logger
from utils.observability import observe

logger = get_logger(__name__)


class LiteLLM(BaseLLM):
    """Wrapper around litellm.acompletion."""

    def __init__(
        self,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> None:
        super().__init__(model=model, temperature=temperature)
        self.max_tokens = max_tokens

    @observe(llm=True)
    async def acompletion(
        self,
        messages: List[Dict[str, Any]],
        *,
        tools: Optional[List[Dict[str, Any]]] = None,
        **kwargs: Any,
    ) -> LLMResponse:
        resp = await litellm.acompletion(**self._completion_kwargs(messages, tools, kwargs))
        return self._to_response(resp)

    async def astream(
        self,
        messages: List[Dict[str, Any]],
        *,
        tools: Optional[List[Dict[str, Any]]] = None,
        **kwargs: Any,
    ) -> AsyncIterator[StreamItem]:
        completion_kwargs = self._completion_kwargs(messages, tools, kwargs)
        completion_kwargs["stream"] = True

        stream = await litellm.acompletion(**completion_kwargs)
        chunks: List[Any] = []
        async for chunk in stream:
            chunks.append(chunk)
            text = self._delta_text(chunk)
            if text:
                yield LLMDelta(text)

        if not chunks:
            raise ValueError("LLM stream ended without any chunks")
        yield self._stream_response(messages, chunks)

    @observe(llm=True)
    def _stream_response(self, messages: List[Dict[str, Any]], chunks: List[Any]) -> LLMResponse:
        """Assemble the streamed chunks into one response."""
        resp = litellm.stream_chunk_builder(chunks, messages=messages)
        return self._to_response(resp)

    def _completion_kwargs(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]],
        kwargs: Dict[str, Any],
    ) -> Dict[str, Any]:
        # Merge default parameters with provided kwargs
        effective_temperature = kwargs.get("temperature", self.temperature)
        effective_max_tokens = kwargs.get("max_tokens", self.max_tokens)

        completion_kwargs: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
        }
        if tools:
            completion_kwargs["tools"] = tools
        if effective_temperature is not None:
            completion_kwargs["temperature"] = effective_temperature
        if effective_max_tokens is not None:
            completion_kwargs["max_tokens"] = effective_max_tokens

        for key, value in kwargs.items():
            if key not in ["temperature", "max_tokens"]:
                completion_kwargs[key] = value
        return completion_kwargs

    def _to_response(self, resp: Any) -> LLMResponse:
        try:
            message = resp.choices[0].message
        except (IndexError, AttributeError, TypeError) as exc:
            raise ValueError("LLM returned a malformed response") from exc

        raw_content = getattr(message, "content", None)
        if isinstance(raw_content, str):
            raw_content = raw_content.strip()

        tool_calls: List[ToolCallRequest] = []
        for tc in getattr(message, "tool_calls", None) or []:
            function = getattr(tc, "function", None)
            name = getattr(function, "name", None) or "unknown"
            tool_calls.append(
                ToolCallRequest(
                    id=getattr(tc, "id", None) or f"call_{uuid4().hex[:24]}",
                    name=name,
                    arguments=getattr(function, "arguments", None),
                )
            )

        prompt_tokens, completion_tokens, total_tokens = self._extract_token_usage(resp)

        return LLMResponse(
            text=Content.from_raw(raw_content),
            tool_calls=tool_calls,
            prompt_tokens=prompt_tokens if isinstance(prompt_tokens, int) else None,
            completion_tokens=completion_tokens if isinstance(completion_tokens, int) else None,
            total_tokens=total_tokens if isinstance(total_tokens, int) else None,
        )

    @staticmethod
    def _delta_text(chunk: Any) -> str:
        try:
            content = chunk.choices[0].delta.content
        except (IndexError, AttributeError, TypeError):
            return ""
        return content if isinstance(content, str) else ""

    def _extract_token_usage(self, resp: Any) -> tuple[int | None, int | None, int | None]:
        """Extract token usage from provider response with fallbacks for different providers."""
        def _get_token(obj: Any, *keys: str) -> int | None:
            for key in keys:
                if isinstance(obj, dict):
                    val = obj.get(key)
                elif hasattr(obj, key):
                    val = getattr(obj, key, None)
                else:
                    continue
                if isinstance(val, int):
                    return val
            return None

        try:
            usage = getattr(resp, "usage", None) or (resp.get("usage") if isinstance(resp, dict) else None)
            if usage is None:
                return None, None, None

            prompt_tokens = _get_token(usage, "prompt_tokens", "input_tokens")
            completion_tokens = _get_token(usage, "completion_tokens", "output_tokens")
            total_tokens = _get_token(usage, "total_tokens")

            # Compute total if missing but components available
            if total_tokens is None and prompt_tokens is not None and completion_tokens is not None:
                total_tokens = prompt_tokens + completion_tokens

            return prompt_tokens, completion_tokens, total_tokens
        except Exception:
            return None, None, None
