"""Total helpers for turning model output into usable values.

Both functions never raise: tool arguments and message content come straight
from a model and may be malformed in any way.
"""
from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any, Dict

from aigo.reasoner.messages import Content, Message, Parts, Text, TextPart


def normalize_arguments(raw: Any) -> Dict[str, Any]:
    """Parse tool arguments into a mapping.

    Accepts a mapping, a JSON string or a doubly encoded JSON string. Anything
    that does not decode to an object is wrapped as ``{"input": raw}``.
    """
    if raw is None:
        return {}
    if isinstance(raw, Mapping):
        return raw  # type: ignore[return-value]
    if not isinstance(raw, str):
        return {"input": raw}
    if not raw.strip():
        return {}

    try:
        parsed = json.loads(raw)
        if isinstance(parsed, str):
            parsed = json.loads(parsed)
    except (ValueError, TypeError):
        return {"input": raw}

    if isinstance(parsed, dict):
        return parsed
    return {"input": raw}


def extract_text(obj: Any) -> str:
    """Plain text of a message or content value, concatenating parts in order."""
    try:
        content = obj.content if isinstance(obj, Message) else obj
        if isinstance(content, Text):
            return content.value
        if isinstance(content, Parts):
            return "".join(
                p.text if isinstance(p, TextPart) else json.dumps(p.data, ensure_ascii=False, default=str)
                for p in content.parts
            )
        if isinstance(content, (str, list, tuple)) or content is None:
            return extract_text(Content.from_raw(content))
        return str(content)
    except Exception:
        return ""
