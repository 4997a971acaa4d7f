"""
Step-by-step debug logging helpers.
Every request logs its inputs, outputs and errors as named steps.
"""
import json
import logging
import sys
from typing import Any

logger = logging.getLogger("ogforge")

_MARKERS = {
    "input": "📥",
    "output": "📤",
    "error": "❌",
    "info": "ℹ️",
}


class StepFormatter(logging.Formatter):
    """
    Formats records as:
    [ 2026-01-06 05:32:41 ] : INFO : ogforge : Message
    """

    def format(self, record):
        timestamp = self.formatTime(record, "%Y-%m-%d %H:%M:%S")
        return f"[ {timestamp} ] : {record.levelname} : {record.name} : {record.getMessage()}"


def setup_logging(debug: bool = True) -> logging.Logger:
    """Attach a stdout handler to the service logger (idempotent)."""
    logger.setLevel(logging.DEBUG if debug else logging.INFO)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(StepFormatter())
        logger.addHandler(handler)
        logger.propagate = False
    return logger


def _render_payload(data: Any) -> str:
    if isinstance(data, (dict, list, tuple)):
        try:
            return json.dumps(data, default=str, ensure_ascii=False)
        except (TypeError, ValueError):
            return repr(data)
    return str(data)


def print_step(step: str, data: Any = None, kind: str = "info") -> None:
    """
    Log a named processing step.

    Args:
        step: Human readable step name
        data: Payload to attach (dicts are rendered as JSON)
        kind: One of "input", "output", "error", "info"
    """
    marker = _MARKERS.get(kind, _MARKERS["info"])
    message = f"{marker} {step}"
    if data is not None:
        message = f"{message}: {_render_payload(data)}"

    if kind == "error":
        logger.error(message)
    elif kind == "info":
        logger.info(message)
    else:
        logger.debug(message)
