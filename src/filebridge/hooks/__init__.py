"""
Pre-job and post-job hooks: webhooks and shell commands.
"""

from filebridge.hooks.executor import HookExecutor, HookResult
from filebridge.hooks.templating import PLACEHOLDERS, HookContext, interpolate, truncate_output

__all__ = [
    "PLACEHOLDERS",
    "HookContext",
    "HookExecutor",
    "HookResult",
    "interpolate",
    "truncate_output",
]
