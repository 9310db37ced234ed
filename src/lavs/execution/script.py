"""Execution of ``script`` handlers as external processes.

Each call spawns the handler command in its own process group so a timeout
can take down everything the script started. Spawned processes are tracked
until they are reaped; :meth:`ScriptExecutor.terminate_all` kills whatever is
still running at shutdown.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import re
import signal
import time
from collections.abc import Mapping
from typing import Any

from lavs.errors import LAVSError, LAVSErrorCode
from lavs.execution.context import ExecutionContext
from lavs.execution.output import parse_output
from lavs.manifest.schema import ScriptHandler
from lavs.security.environment import build_environment, input_to_env, stringify_value
from lavs.security.permissions import DEFAULT_TIMEOUT_MS, PermissionChecker

logger = logging.getLogger(__name__)

TEMPLATE_PATTERN = re.compile(r"\{\{([^}]+)\}\}")
BLOCKED_TEMPLATE_KEYS = frozenset({"__proto__", "constructor", "prototype"})

_SIGKILL = getattr(signal, "SIGKILL", signal.SIGTERM)


def _lookup(data: Any, path: str) -> Any:
    """Resolve a dotted path inside nested dicts/lists."""
    current = data
    for key in path.split("."):
        if current is None:
            return None
        if key in BLOCKED_TEMPLATE_KEYS or key.startswith("__"):
            return None
        if isinstance(current, Mapping):
            current = current.get(key)
        elif isinstance(current, list) and key.isdigit():
            index = int(key)
            current = current[index] if index < len(current) else None
        else:
            return None
    return current


def resolve_args(args: list[str], data: Any) -> list[str]:
    """Substitute ``{{key}}`` / ``{{a.b}}`` placeholders with input values.

    Missing values render as empty strings. Without an input object the
    arguments are returned unchanged.
    """
    if not isinstance(data, Mapping):
        return list(args)

    def replace(match: re.Match[str]) -> str:
        value = _lookup(data, match.group(1).strip())
        return "" if value is None else stringify_value(value)

    return [TEMPLATE_PATTERN.sub(replace, arg) for arg in args]


def _signal_group(process: asyncio.subprocess.Process, sig: int) -> None:
    try:
        if hasattr(os, "killpg"):
            os.killpg(process.pid, sig)
        elif process.returncode is None:
            process.send_signal(sig)
    except (ProcessLookupError, PermissionError):
        pass


class ScriptExecutor:
    """Runs script handlers with input delivery, env filtering and timeouts.

    Args:
        permission_checker: Resolves effective timeouts
        default_timeout_ms: Timeout when neither handler nor policy sets one
        kill_grace_ms: Time between SIGTERM and SIGKILL after a timeout
        base_env: Host environment to inherit (default: ``os.environ``)
    """

    def __init__(
        self,
        permission_checker: PermissionChecker | None = None,
        default_timeout_ms: int = DEFAULT_TIMEOUT_MS,
        kill_grace_ms: int = 5_000,
        base_env: Mapping[str, str] | None = None,
    ) -> None:
        self.permission_checker = permission_checker or PermissionChecker()
        self.default_timeout_ms = default_timeout_ms
        self.kill_grace_ms = kill_grace_ms
        self.base_env = base_env
        self._processes: dict[int, asyncio.subprocess.Process] = {}

    @property
    def active_count(self) -> int:
        """Number of spawned processes not yet reaped."""
        return len(self._processes)

    def build_environment(
        self,
        handler: ScriptHandler,
        data: Any,
        context: ExecutionContext,
    ) -> dict[str, str]:
        """Compose the environment a handler process is spawned with."""
        input_env = None
        if handler.input == "env" and isinstance(data, Mapping):
            input_env = input_to_env(data)

        return build_environment(
            agent_id=context.agent_id,
            endpoint_id=context.endpoint_id,
            context_env=context.env,
            handler_env=handler.env,
            input_env=input_env,
            base_env=self.base_env,
        )

    async def execute(
        self,
        handler: ScriptHandler,
        data: Any,
        context: ExecutionContext,
    ) -> Any:
        """Run a script handler and return its parsed JSON output.

        Args:
            handler: Script handler configuration
            data: Call input
            context: Execution context with merged permissions

        Returns:
            Parsed stdout, or None for empty output

        Raises:
            LAVSError: Timeout when the effective timeout expires,
                HandlerError on spawn failure, non-zero exit or non-JSON output
        """
        started = time.monotonic()
        timeout_ms = self.permission_checker.get_effective_timeout(
            handler, context.permissions, self.default_timeout_ms
        )
        args = resolve_args(handler.args, data)
        env = self.build_environment(handler, data, context)
        cwd = handler.cwd or context.workdir

        stdin_data: bytes | None = None
        if handler.input == "stdin" and data is not None:
            stdin_data = json.dumps(data).encode("utf-8")

        logger.info(
            "Executing script for %s/%s: %s (input=%s, timeout=%dms)",
            context.agent_id,
            context.endpoint_id,
            handler.command,
            handler.input,
            timeout_ms,
        )

        try:
            process = await asyncio.create_subprocess_exec(
                handler.command,
                *args,
                cwd=cwd,
                env=env,
                stdin=asyncio.subprocess.PIPE
                if handler.input == "stdin"
                else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as e:
            raise LAVSError(
                LAVSErrorCode.HANDLER_ERROR,
                f"Script execution failed: {e}",
                {"command": handler.command},
            ) from e

        self._processes[process.pid] = process
        try:
            try:
                stdout_bytes, stderr_bytes = await asyncio.wait_for(
                    process.communicate(stdin_data),
                    timeout=timeout_ms / 1000,
                )
            except TimeoutError:
                await self._terminate(process)
                logger.warning(
                    "Script for %s/%s timed out after %dms",
                    context.agent_id,
                    context.endpoint_id,
                    timeout_ms,
                )
                raise LAVSError(
                    LAVSErrorCode.TIMEOUT,
                    f"Script execution timeout after {timeout_ms}ms",
                    {"timeoutMs": timeout_ms},
                ) from None
        finally:
            # Leftover members of the group die with the call
            _signal_group(process, _SIGKILL)
            self._processes.pop(process.pid, None)

        stdout = stdout_bytes.decode("utf-8", errors="replace")
        stderr = stderr_bytes.decode("utf-8", errors="replace")
        if stderr:
            logger.debug("[%s] stderr: %s", context.endpoint_id, stderr.rstrip())

        exit_code = process.returncode
        logger.info(
            "Script for %s completed in %.0fms with exit code %s",
            context.endpoint_id,
            (time.monotonic() - started) * 1000,
            exit_code,
        )

        if exit_code != 0:
            raise LAVSError(
                LAVSErrorCode.HANDLER_ERROR,
                f"Script exited with code {exit_code}",
                {"exitCode": exit_code, "stderr": stderr, "stdout": stdout},
            )

        return parse_output(stdout, stderr)

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        """SIGTERM the process group, escalating to SIGKILL after the grace period."""
        _signal_group(process, signal.SIGTERM)
        try:
            await asyncio.wait_for(process.wait(), timeout=self.kill_grace_ms / 1000)
        except TimeoutError:
            _signal_group(process, _SIGKILL)
            await process.wait()

    async def terminate_all(self) -> int:
        """Kill every tracked process (used at shutdown).

        Returns:
            Number of processes killed
        """
        processes = list(self._processes.values())
        for process in processes:
            _signal_group(process, _SIGKILL)
        for process in processes:
            await process.wait()
        self._processes.clear()
        return len(processes)
