from __future__ import annotations

from utils.logger import get_logger

logger = get_logger(__name__)


class ReasoningError(Exception):
    """Base exception for all reasoning-related errors."""

    def __init__(self, message: str):
        super().__init__(message)
        logger.warning(
            "reasoning_error",
            error_type=self.__class__.__name__,
            message=message,
        )


class LoopInvocationError(ReasoningError):
    """The language model call failed; the loop cannot continue."""

    def __init__(self, message: str, turn: int):
        self.turn = turn
        super().__init__(f"Model invocation failed on turn {turn}: {message}")
