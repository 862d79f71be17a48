"""
Hook context and ``{{placeholder}}`` interpolation.
"""

from __future__ import annotations

import re
import shlex
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from filebridge.models import HookTrigger

PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*([a-z_]+)\s*\}\}")

PLACEHOLDERS = (
    "job_id",
    "job_name",
    "run_id",
    "trigger",
    "status",
    "files_transferred",
    "bytes_transferred",
    "error_message",
)


@dataclass
class HookContext:
    """Runtime fields exposed to hooks."""

    job_id: int
    job_name: str
    run_id: int
    trigger: HookTrigger
    status: str | None = None
    files_transferred: int | None = None
    bytes_transferred: int | None = None
    error_message: str | None = None

    def values(self) -> dict[str, str]:
        """Placeholder values as strings (missing counts render as 0, missing text as empty)."""
        return {
            "job_id": str(self.job_id),
            "job_name": self.job_name,
            "run_id": str(self.run_id),
            "trigger": str(self.trigger),
            "status": self.status or "",
            "files_transferred": str(self.files_transferred or 0),
            "bytes_transferred": str(self.bytes_transferred or 0),
            "error_message": self.error_message or "",
        }

    def envelope(self) -> dict[str, Any]:
        """Default JSON body for webhooks without a body template."""
        return {
            "job_id": self.job_id,
            "job_name": self.job_name,
            "run_id": self.run_id,
            "trigger": str(self.trigger),
            "status": self.status,
            "files_transferred": self.files_transferred,
            "bytes_transferred": self.bytes_transferred,
            "error_message": self.error_message,
        }

    def environment(self) -> dict[str, str]:
        """``FILEBRIDGE_*`` variables for shell hooks."""
        return {f"FILEBRIDGE_{key.upper()}": value for key, value in self.values().items()}


def interpolate(template: str, context: HookContext, quote: Callable[[str], str] | None = None) -> str:
    """
    Replace known placeholders; unknown ones are left as written.

    ``quote`` is applied to each substituted value (shell hooks pass
    ``shlex.quote``).
    """
    values = context.values()

    def _substitute(match: re.Match[str]) -> str:
        key = match.group(1)
        if key not in values:
            return match.group(0)
        return quote(values[key]) if quote else values[key]

    return PLACEHOLDER_PATTERN.sub(_substitute, template)


def interpolate_shell(template: str, context: HookContext) -> str:
    return interpolate(template, context, quote=shlex.quote)


def truncate_output(text: str, max_bytes: int) -> str:
    """Cut ``text`` to ``max_bytes`` UTF-8 bytes, marking the cut."""
    encoded = text.encode("utf-8")
    if len(encoded) <= max_bytes:
        return text
    return encoded[:max_bytes].decode("utf-8", errors="ignore") + "\n...[truncated]"
