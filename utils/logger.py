"""
Structured logging module using structlog

Features
--------
• Structured logging with automatic context
• Pretty (colour) or JSON console output
• Optional file logging with rotation
• Per-library level overrides for noisy dependencies
"""
from __future__ import annotations
import json
import logging
import os
import sys
from pathlib import Path
from logging.handlers import RotatingFileHandler
from typing import Any, Dict

import structlog

_CONSOLE_RENDERERS = ("json", "pretty")


def _supports_colour() -> bool:
    """True if stdout seems to handle ANSI colour codes."""
    if os.getenv("NO_COLOR"):
        return False
    if sys.platform == "win32" and os.getenv("TERM") != "xterm":
        return False
    return sys.stdout.isatty()


def _read_cfg(path: str | Path | None) -> Dict[str, Any]:
    if not path:
        return {}
    p = Path(path)
    if not p.is_file():
        raise FileNotFoundError(f"Logging config file not found: {p}")
    try:
        return json.loads(p.read_text()).get("logging", {})
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in logging config: {e}") from e


def _console_renderer(console_cfg: Dict[str, Any]) -> Any:
    choice = (os.getenv("LOG_CONSOLE_RENDERER") or console_cfg.get("renderer") or "pretty").strip().lower()
    if choice not in _CONSOLE_RENDERERS:
        raise ValueError(
            f"Invalid console logging renderer option: '{choice}'. Allowed: {', '.join(_CONSOLE_RENDERERS)}"
        )
    if choice == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=_supports_colour())


def init_logger(config_path: str | Path | None = None) -> None:
    """Configure structlog with console and optional file output."""
    cfg = _read_cfg(config_path)
    level = getattr(logging, str(cfg.get("level", "INFO")).upper(), logging.INFO)

    shared_processors = [
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="ISO"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.setLevel(level)

    console_cfg = cfg.get("console", {})
    if console_cfg.get("enabled", True):
        console = logging.StreamHandler(sys.stdout)
        console.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                foreign_pre_chain=shared_processors,
                processors=[
                    structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                    _console_renderer(console_cfg),
                ],
            )
        )
        root.addHandler(console)

    file_cfg = cfg.get("file", {})
    if file_cfg.get("enabled", False):
        path = Path(file_cfg.get("path", "logs/app.log"))
        path.parent.mkdir(parents=True, exist_ok=True)

        rotation = file_cfg.get("rotation", {})
        if rotation.get("enabled", True):
            handler: logging.Handler = RotatingFileHandler(
                path,
                maxBytes=rotation.get("max_bytes", 10_000_000),
                backupCount=rotation.get("backup_count", 5),
            )
        else:
            handler = logging.FileHandler(path)

        handler.setLevel(getattr(logging, str(file_cfg.get("level", "DEBUG")).upper(), logging.DEBUG))
        handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                foreign_pre_chain=shared_processors,
                processors=[
                    structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                    structlog.processors.JSONRenderer(),
                ],
            )
        )
        root.addHandler(handler)

    for library, library_level in cfg.get("libraries", {}).items():
        logging.getLogger(library).setLevel(getattr(logging, str(library_level).upper(), logging.WARNING))

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],  # type: ignore[arg-type]
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str):
    """Get a structlog logger instance."""
    return structlog.get_logger(name)
