"""CLI output.

Every command prints either human-readable text or, with ``--json``, one
JSON document on stdout. Errors go to stderr in both modes so scripted
callers can parse stdout unconditionally.
"""
from __future__ import annotations

import json
import sys
from typing import Any, Dict, Optional, TextIO


def _dump(data: Any, indent: int) -> str:
    # Paths, enums and datetimes fall back to str().
    return json.dumps(data, indent=indent, default=str)


class OutputFormatter:
    """Route command results to stdout and failures to stderr."""

    def __init__(self, json_mode: bool = False, indent: int = 2):
        self.json_mode = json_mode
        self.indent = indent

    def _write(self, text: str, stream: Optional[TextIO] = None) -> None:
        print(text, file=stream or sys.stdout)

    def success(self, data: Dict[str, Any], message: str, *, status: str = "success") -> None:
        """Print ``message``, or ``{"status": status, **data}`` in JSON mode."""
        if self.json_mode:
            self._write(_dump({"status": status, **data}, self.indent))
        else:
            self._write(message)

    def error(
        self,
        error: Exception | str,
        message: Optional[str] = None,
        *,
        error_code: str = "error",
    ) -> None:
        """Report a failure on stderr.

        JSON mode prints ``{"error": error_code, "message": ...}`` and, for a
        :class:`~convoy.core.exceptions.ConvoyError`, its structured details.
        """
        text = message or str(error)
        if not self.json_mode:
            self._write(f"Error: {text}", sys.stderr)
            return
        payload: Dict[str, Any] = {"error": error_code, "message": text}
        to_json_error = getattr(error, "to_json_error", None)
        if callable(to_json_error):
            payload["details"] = to_json_error()
        self._write(_dump(payload, self.indent), sys.stderr)

    def json_output(self, data: Any) -> None:
        self._write(_dump(data, self.indent))

    def text(self, message: str) -> None:
        if not self.json_mode:
            self._write(message)


__all__ = ["OutputFormatter"]
