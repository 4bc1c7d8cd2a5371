"""CLI utility functions for user interaction."""
import json
import sys
from typing import Any, Dict, Optional, TextIO

from utils.logger import get_logger
logger = get_logger(__name__)

DONE_MARKER = "[DONE]"

_ICONS = {
    "thought": "💭",
    "tool_call": "🔧",
    "observation": "👀",
    "final_answer": "✅",
}


def read_user_goal(prompt: str = "🤖 Ask me anything: ") -> str:
    """Read a message from user input via stdin."""
    print(prompt, end="", flush=True)
    line = sys.stdin.readline()
    if not line:  # EOF
        raise KeyboardInterrupt

    goal = line.strip()
    if goal.lower() in {"bye", "quit", "exit", "q"}:
        raise KeyboardInterrupt

    return goal


def render_record(line: str) -> Optional[Dict[str, Any]]:
    """Decode one NDJSON line from the chat stream.

    Returns ``{"type": "done"}`` for the terminator and None for blank or
    malformed lines; partial chunks are expected on a live connection.
    """
    line = line.strip()
    if not line:
        return None
    if line == DONE_MARKER:
        return {"type": "done"}
    try:
        record = json.loads(line)
    except ValueError:
        logger.debug("stream_record_unparsable", line_preview=line[:120])
        return None
    if not isinstance(record, dict) or "type" not in record:
        logger.debug("stream_record_unexpected", line_preview=line[:120])
        return None
    return record


def format_step(step: Dict[str, Any]) -> str:
    kind = step.get("kind", "")
    icon = _ICONS.get(kind, "•")
    invocation = step.get("toolInvocation") or {}
    if kind == "tool_call":
        args = json.dumps(invocation.get("arguments", {}), ensure_ascii=False)
        return f"{icon} {invocation.get('name', 'unknown')}({args})"
    if kind == "observation":
        status = invocation.get("status")
        marker = " [error]" if status == "error" else ""
        return f"{icon} {step.get('content', '')}{marker}"
    if kind == "final_answer":
        return f"{icon} **Answer:** {step.get('content', '')}"
    return f"{icon} {step.get('content', '')}"


class StepPrinter:
    """Prints a chat stream as it arrives.

    Thought steps are updated in place while tokens stream, so each one is
    held back until a different step replaces it.
    """

    def __init__(self, out: TextIO = sys.stdout) -> None:
        self.out = out
        self._open_thought: Optional[Dict[str, Any]] = None

    def feed(self, line: str) -> None:
        record = render_record(line)
        if record is None:
            return
        kind = record.get("type")
        if kind == "react_step":
            step = record.get("step") or {}
            if step.get("kind") in ("thought", "final_answer"):
                if self._open_thought is not None and self._open_thought.get("id") != step.get("id"):
                    self.flush()
                self._open_thought = step
                return
            self.flush()
            print(format_step(step), file=self.out)
        elif kind == "error":
            self.flush()
            print(f"❌ **Failed:** {record.get('error')} ({record.get('code')})", file=self.out)
        elif kind == "done":
            self.flush()

    def flush(self) -> None:
        if self._open_thought is not None:
            print(format_step(self._open_thought), file=self.out)
            self._open_thought = None
