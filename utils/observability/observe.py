"""Simple, minimal tracing decorator for the chat agent."""

from __future__ import annotations

from contextlib import contextmanager
from functools import wraps
from inspect import iscoroutinefunction, signature
from typing import Any, Callable, Iterator, Optional
from contextvars import ContextVar
from dataclasses import is_dataclass, asdict
import json
import time


SECRET_REDACT_KEYS = {
    "apikey", "accesstoken", "refreshtoken", "clientsecret", "secret", "password",
    "authorization", "bearer", "cookie", "setcookie", "privatekey", "sshkey",
}


def _tracer() -> Any:
    try:
        from opentelemetry import trace
        return trace, trace.get_tracer("aigo-agent")
    except Exception:
        return None, None


def observe(_fn: Optional[Callable[..., Any]] = None, *, llm: bool = False, root: bool = False) -> Callable[..., Any]:
    """Minimal tracing decorator.

    Usage:
        @observe
        def my_function(): ...

        @observe(llm=True)
        async def acompletion(): ...

        @observe(root=True)
        async def run(): ...

    - Auto-names spans from function module.qualname
    - Works for plain functions and coroutine functions
    - Records timing, exceptions, basic I/O
    - Tracks token usage when llm=True
    - Aggregates total tokens when root=True
    - No-op if OpenTelemetry unavailable
    """

    def _decorate(fn: Callable[..., Any]) -> Callable[..., Any]:
        module = getattr(fn, "__module__", "") or ""
        qualname = getattr(fn, "__qualname__", fn.__name__)
        span_name = f"{module}.{qualname}" if module else qualname

        def _enter(span: Any, args: tuple, kwargs: dict) -> None:
            if root:
                _start_token_accumulator(span)
            _capture_input(span, fn, args, kwargs, llm)

        def _leave(span: Any, result: Any) -> None:
            if llm:
                _capture_llm_output(span, result)
            else:
                _capture_output(span, result)

        def _finish(span: Any, start_time: float) -> None:
            span.set_attribute("duration_ms", int((time.perf_counter() - start_time) * 1000))
            if root:
                _finalize_token_accumulator(span)

        if iscoroutinefunction(fn):
            @wraps(fn)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                trace, tracer = _tracer()
                if tracer is None:
                    return await fn(*args, **kwargs)

                start_time = time.perf_counter()
                with tracer.start_as_current_span(span_name) as span:
                    try:
                        _enter(span, args, kwargs)
                        result = await fn(*args, **kwargs)
                        _leave(span, result)
                        return result
                    except Exception as e:
                        span.record_exception(e)
                        span.set_status(trace.Status(trace.StatusCode.ERROR))
                        raise
                    finally:
                        _finish(span, start_time)

            return async_wrapper

        @wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            trace, tracer = _tracer()
            if tracer is None:
                return fn(*args, **kwargs)

            start_time = time.perf_counter()
            with tracer.start_as_current_span(span_name) as span:
                try:
                    _enter(span, args, kwargs)
                    result = fn(*args, **kwargs)
                    _leave(span, result)
                    return result
                except Exception as e:
                    span.record_exception(e)
                    span.set_status(trace.Status(trace.StatusCode.ERROR))
                    raise
                finally:
                    _finish(span, start_time)

        return wrapper

    # Support both @observe and @observe() forms
    if callable(_fn):
        return _decorate(_fn)
    return _decorate


@contextmanager
def span_for(name: str, **attributes: Any) -> Iterator[Any]:
    """Open a span without making it current, for work driven from an async generator.

    Yields ``None`` when tracing is off. Results are reported with ``record_result``.
    """
    trace, tracer = _tracer()
    if tracer is None:
        yield None
        return

    span = tracer.start_span(name)
    start_time = time.perf_counter()
    try:
        for key, value in attributes.items():
            span.set_attribute(key, value)
        yield span
    except BaseException as e:
        if isinstance(e, Exception):
            span.record_exception(e)
            span.set_status(trace.Status(trace.StatusCode.ERROR))
        raise
    finally:
        span.set_attribute("duration_ms", int((time.perf_counter() - start_time) * 1000))
        span.end()


def record_result(span: Any, result: Any) -> None:
    """Write a loop outcome onto a span opened by ``span_for``."""
    if span is None:
        return
    _capture_output(span, result)
    total = getattr(result, "total_tokens", None)
    if isinstance(total, int) and total > 0:
        span.set_attribute("tokens.total", total)


def _safe_preview(val: Any, max_len: int = 512) -> Any:
    """Create a JSON-friendly preview of any value with secrets redacted."""
    if val is None or isinstance(val, (bool, int, float)):
        return val
    if isinstance(val, str):
        return val if len(val) <= max_len else val[:max_len] + "..."
    if isinstance(val, dict):
        items = list(val.items())
        preview = {
            str(k): ("<redacted>" if _is_secret_key(str(k)) else _safe_preview(v, max_len))
            for k, v in items[:20]
        }
        if len(items) > 20:
            preview["..."] = f"{len(items) - 20} more keys"
        return preview
    if isinstance(val, (list, tuple)):
        preview_list = [_safe_preview(v, max_len) for v in list(val)[:20]]
        if len(val) > 20:
            preview_list.append("...")
        return preview_list
    if is_dataclass(val) and not isinstance(val, type):
        return _safe_preview(asdict(val), max_len)
    if hasattr(val, "model_dump"):
        return _safe_preview(val.model_dump(), max_len)
    return repr(val)[:max_len]


def _is_secret_key(key: str) -> bool:
    return key.lower().replace("_", "").replace("-", "") in SECRET_REDACT_KEYS


def _capture_input(span: Any, fn: Callable, args: tuple, kwargs: dict, llm: bool) -> None:
    """Capture function inputs with smart previews and redaction."""
    try:
        bound = signature(fn).bind_partial(*args, **kwargs)

        # LLM path: capture messages only (longer cap for prompt visibility)
        if llm:
            messages = bound.arguments.get("messages")
            if messages:
                msg_str = json.dumps(messages, ensure_ascii=False, separators=(",", ":"), default=str)
                span.set_attribute("input", msg_str[:12288])
            return

        inputs = {name: _safe_preview(value) for name, value in bound.arguments.items() if name not in {"self", "cls"}}
        input_str = json.dumps(inputs, ensure_ascii=False, separators=(",", ":"), default=str)
        span.set_attribute("input", input_str[:6144] + ("..." if len(input_str) > 6144 else ""))
    except Exception:
        pass


def _capture_output(span: Any, result: Any) -> None:
    """Capture non-LLM outputs with structured attributes."""
    try:
        # LoopOutcome-like: capture the answer and the loop counters
        if hasattr(result, "final_answer"):
            span.set_attribute("output", str(result.final_answer)[:8192])
            if hasattr(result, "iterations"):
                span.set_attribute("total_iterations", int(result.iterations))
            if hasattr(result, "truncated"):
                span.set_attribute("truncated", bool(result.truncated))
        else:
            span.set_attribute("output", str(result)[:8192])
    except Exception:
        pass


def _capture_llm_output(span: Any, result: Any) -> None:
    """Capture LLM outputs and track tokens."""
    try:
        from aigo.llm.base_llm import LLMResponse

        if isinstance(result, LLMResponse):
            span.set_attribute("output", result.text_value)
            span.set_attribute("tool_call_count", len(result.tool_calls))
            if isinstance(result.prompt_tokens, int):
                span.set_attribute("tokens.prompt", result.prompt_tokens)
            if isinstance(result.completion_tokens, int):
                span.set_attribute("tokens.completion", result.completion_tokens)
            if isinstance(result.total_tokens, int):
                span.set_attribute("tokens.total", result.total_tokens)
                _accumulate_tokens(result.total_tokens)
        else:
            span.set_attribute("output", str(result)[:8192])
    except Exception:
        pass


# ── Token Accumulation ──────────────────────────────────────────────────────
# Root spans start a token counter; child LLM calls increment it; root finalizes total.

_tokens: ContextVar[Optional[int]] = ContextVar("tokens", default=None)
_owner: ContextVar[Optional[int]] = ContextVar("owner", default=None)


def _start_token_accumulator(span: Any) -> None:
    """Initialize token counter for root span."""
    if _tokens.get() is None:
        _tokens.set(0)
        _owner.set(id(span))


def _accumulate_tokens(token_count: int) -> None:
    """Add tokens from an LLM call."""
    current = _tokens.get()
    if isinstance(current, int):
        _tokens.set(current + token_count)


def _finalize_token_accumulator(span: Any) -> None:
    """Write total tokens to root span and reset."""
    if _owner.get() == id(span):
        total = _tokens.get()
        if isinstance(total, int) and total > 0:
            span.set_attribute("tokens.total", total)
        _tokens.set(None)
        _owner.set(None)
