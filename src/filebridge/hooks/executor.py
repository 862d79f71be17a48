"""
Hook execution.

Runs the webhook / shell hooks attached to a job trigger, records one HookRun
per invocation, and raises HookError on the first failure.
"""

from __future__ import annotations

import asyncio
import os
import signal
import time
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

import aiohttp

from filebridge.exceptions import HookConfigError, HookError
from filebridge.hooks.templating import HookContext, interpolate, interpolate_shell, truncate_output
from filebridge.models import Hook, HookRun, HookType, LogStatus
from filebridge.store.base import JobStore
from filebridge.utils.logging import get_logger

logger = get_logger("filebridge.hooks")

USER_AGENT = "FileBridge-Hook/1.0"
WEBHOOK_METHODS = frozenset({"GET", "HEAD", "POST", "PUT", "PATCH", "DELETE"})
BODYLESS_METHODS = frozenset({"GET", "HEAD"})


@dataclass
class HookResult:
    success: bool
    output: str | None = None
    error_message: str | None = None
    duration_ms: int = 0


class HookExecutor:
    """
    Executes hooks for one store.

    Args:
        store: Where HookRun rows are written
        max_output_bytes: Ceiling for captured output
        webhook_timeout_ms: Default when a webhook config has no ``timeoutMs``
        shell_timeout_ms: Default when a shell config has no ``timeoutMs``
    """

    def __init__(
        self,
        store: JobStore,
        max_output_bytes: int = 4096,
        webhook_timeout_ms: int = 10_000,
        shell_timeout_ms: int = 30_000,
    ):
        self.store = store
        self.max_output_bytes = max_output_bytes
        self.webhook_timeout_ms = webhook_timeout_ms
        self.shell_timeout_ms = shell_timeout_ms

    @classmethod
    def from_config(cls, store: JobStore, hooks_config: dict[str, Any]) -> HookExecutor:
        return cls(
            store,
            max_output_bytes=int(hooks_config.get("max_output_bytes", 4096)),
            webhook_timeout_ms=int(hooks_config.get("webhook_timeout_ms", 10_000)),
            shell_timeout_ms=int(hooks_config.get("shell_timeout_ms", 30_000)),
        )

    async def execute_hooks(self, hooks: Iterable[Hook], context: HookContext) -> None:
        """
        Run hooks in order.

        Disabled hooks are skipped without a HookRun. Every executed hook is
        recorded before this returns or raises.

        Raises:
            HookError: On the first failing hook; later hooks are not run
        """
        for hook in hooks:
            if not hook.enabled:
                logger.info(f"Hook '{hook.name}' skipped (disabled)")
                continue

            logger.info(f"Executing {hook.type} hook '{hook.name}' ({context.trigger})")
            try:
                config = self._validate_config(hook)
            except HookConfigError as e:
                logger.error(f"Hook '{hook.name}' has invalid config: {e.message}")
                self._record(hook, context, HookResult(success=False, error_message=e.reason))
                raise

            if hook.type == HookType.WEBHOOK:
                result = await self.run_webhook(config, context)
            else:
                result = await self.run_shell(config, context)

            self._record(hook, context, result)
            if result.success:
                logger.info(f"Hook '{hook.name}' succeeded in {result.duration_ms}ms")
            else:
                logger.error(f"Hook '{hook.name}' failed in {result.duration_ms}ms: {result.error_message}")
                raise HookError(hook.name, result.error_message or "unknown error")

    def _validate_config(self, hook: Hook) -> dict[str, Any]:
        try:
            config = hook.parsed_config()
        except ValueError as e:
            raise HookConfigError(hook.name, "Invalid hook config JSON") from e

        if hook.type == HookType.WEBHOOK:
            if not isinstance(config.get("url"), str) or not config["url"]:
                raise HookConfigError(hook.name, "Webhook config requires 'url'")
            method = str(config.get("method") or "POST").upper()
            if method not in WEBHOOK_METHODS:
                raise HookConfigError(hook.name, f"Unsupported webhook method '{method}'")
            headers = config.get("headers")
            if headers is not None and not isinstance(headers, dict):
                raise HookConfigError(hook.name, "Webhook 'headers' must be an object")
        elif hook.type == HookType.SHELL:
            if not isinstance(config.get("command"), str) or not config["command"].strip():
                raise HookConfigError(hook.name, "Shell config requires 'command'")

        timeout = config.get("timeoutMs")
        if timeout is not None and (isinstance(timeout, bool) or not isinstance(timeout, int) or timeout <= 0):
            raise HookConfigError(hook.name, "'timeoutMs' must be a positive integer")
        return config

    async def run_webhook(self, config: dict[str, Any], context: HookContext) -> HookResult:
        method = str(config.get("method") or "POST").upper()
        timeout_ms = int(config.get("timeoutMs") or self.webhook_timeout_ms)
        data: str | None = None
        json_body: dict[str, Any] | None = None
        if method not in BODYLESS_METHODS:
            if config.get("body"):
                data = interpolate(str(config["body"]), context)
            else:
                json_body = context.envelope()

        # Body-less requests carry no Content-Type; json= sets its own
        headers = {"User-Agent": USER_AGENT}
        if data is not None:
            headers["Content-Type"] = "application/json"
        headers.update({str(k): str(v) for k, v in (config.get("headers") or {}).items()})

        start = time.monotonic()
        try:
            timeout = aiohttp.ClientTimeout(total=timeout_ms / 1000)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.request(
                    method, config["url"], headers=headers, data=data, json=json_body
                ) as resp:
                    text = await resp.text(errors="replace")
                    duration_ms = _elapsed_ms(start)
                    output = truncate_output(text, self.max_output_bytes)
                    if 200 <= resp.status < 300:
                        return HookResult(success=True, output=output, duration_ms=duration_ms)
                    return HookResult(
                        success=False,
                        output=output,
                        error_message=f"HTTP {resp.status} {resp.reason or ''}".rstrip(),
                        duration_ms=duration_ms,
                    )
        except TimeoutError:
            return HookResult(
                success=False,
                error_message=f"Webhook timed out after {timeout_ms}ms",
                duration_ms=_elapsed_ms(start),
            )
        except aiohttp.ClientError as e:
            return HookResult(success=False, error_message=str(e) or type(e).__name__, duration_ms=_elapsed_ms(start))

    async def run_shell(self, config: dict[str, Any], context: HookContext) -> HookResult:
        command = interpolate_shell(config["command"], context)
        timeout_ms = int(config.get("timeoutMs") or self.shell_timeout_ms)
        env = {**os.environ, **context.environment()}

        start = time.monotonic()
        try:
            process = await asyncio.create_subprocess_shell(
                command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                cwd=config.get("workingDir") or None,
                env=env,
                start_new_session=True,
            )
        except OSError as e:
            return HookResult(success=False, error_message=str(e), duration_ms=_elapsed_ms(start))

        try:
            stdout, _ = await asyncio.wait_for(process.communicate(), timeout=timeout_ms / 1000)
        except TimeoutError:
            _kill_process_group(process)
            stdout, _ = await process.communicate()
            return HookResult(
                success=False,
                output=self._shell_output(stdout),
                error_message=f"Shell command timed out after {timeout_ms}ms",
                duration_ms=_elapsed_ms(start),
            )

        output = self._shell_output(stdout)
        if process.returncode == 0:
            return HookResult(success=True, output=output, duration_ms=_elapsed_ms(start))
        return HookResult(
            success=False,
            output=output,
            error_message=f"Command exited with code {process.returncode}",
            duration_ms=_elapsed_ms(start),
        )

    def _shell_output(self, raw: bytes | None) -> str | None:
        text = (raw or b"").decode("utf-8", errors="replace").strip()
        return truncate_output(text, self.max_output_bytes) if text else None

    def _record(self, hook: Hook, context: HookContext, result: HookResult) -> None:
        self.store.add_hook_run(
            HookRun(
                job_id=context.job_id,
                job_run_id=context.run_id,
                hook_id=hook.id,
                hook_name=hook.name,
                hook_type=str(hook.type),
                trigger=context.trigger,
                status=LogStatus.SUCCESS if result.success else LogStatus.FAILURE,
                duration_ms=result.duration_ms,
                output=result.output,
                error_message=result.error_message,
            )
        )


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


def _kill_process_group(process: asyncio.subprocess.Process) -> None:
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except ProcessLookupError:
        # Already exited
        return
