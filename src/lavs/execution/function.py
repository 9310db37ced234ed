"""Execution of ``function`` handlers inside the gateway process."""

from __future__ import annotations

import asyncio
import importlib
import importlib.util
import inspect
import logging
import time
from collections.abc import Callable
from pathlib import Path
from types import ModuleType
from typing import Any

from lavs.errors import LAVSError, LAVSErrorCode
from lavs.execution.context import ExecutionContext
from lavs.manifest.schema import FunctionHandler
from lavs.security.permissions import DEFAULT_TIMEOUT_MS, PermissionChecker

logger = logging.getLogger(__name__)

HandlerFunction = Callable[[Any, ExecutionContext], Any]


def _is_file_module(module: str) -> bool:
    return module.endswith(".py") or "/" in module or "\\" in module


class FunctionExecutor:
    """Invokes Python callables declared as ``{"module": ..., "function": ...}``.

    ``module`` is a dotted import path or a path to a ``.py`` file (relative
    paths resolve against the agent directory). The callable is invoked as
    ``fn(input, context)``; coroutine functions are awaited, plain functions
    run in a worker thread so they cannot stall the event loop.

    Args:
        permission_checker: Resolves effective timeouts
        default_timeout_ms: Timeout when neither handler nor policy sets one
    """

    def __init__(
        self,
        permission_checker: PermissionChecker | None = None,
        default_timeout_ms: int = DEFAULT_TIMEOUT_MS,
    ) -> None:
        self.permission_checker = permission_checker or PermissionChecker()
        self.default_timeout_ms = default_timeout_ms
        self._registered: dict[str, HandlerFunction] = {}
        self._file_modules: dict[str, ModuleType] = {}

    def register(self, module: str, function: str, fn: HandlerFunction) -> None:
        """Register an in-process callable under ``module:function``.

        Registered callables take precedence over importing ``module``.
        """
        self._registered[f"{module}:{function}"] = fn

    def clear_cache(self, directory: str | Path | None = None) -> None:
        """Forget modules loaded from files so edits are picked up.

        Args:
            directory: Only forget modules loaded from inside this directory
        """
        if directory is None:
            self._file_modules.clear()
            return

        base = Path(directory).resolve()
        for path in list(self._file_modules):
            if Path(path).is_relative_to(base):
                del self._file_modules[path]

    def resolve(self, handler: FunctionHandler, workdir: str) -> HandlerFunction:
        """Find the callable a handler refers to.

        Raises:
            LAVSError: HandlerError if the module cannot be imported or the
                attribute is missing or not callable
        """
        registered = self._registered.get(f"{handler.module}:{handler.function}")
        if registered is not None:
            return registered

        try:
            module = self._load_module(handler.module, workdir)
        except LAVSError:
            raise
        except Exception as e:
            raise LAVSError(
                LAVSErrorCode.HANDLER_ERROR,
                f"Failed to import module '{handler.module}': {e}",
            ) from e

        fn = getattr(module, handler.function, None)
        if not callable(fn):
            raise LAVSError(
                LAVSErrorCode.HANDLER_ERROR,
                f"Function '{handler.function}' not found or not a function "
                f"in module '{handler.module}'",
            )
        return fn

    def _load_module(self, module: str, workdir: str) -> ModuleType:
        if not _is_file_module(module):
            return importlib.import_module(module)

        path = Path(module)
        if not path.is_absolute():
            path = Path(workdir) / path
        path = path.resolve()

        cached = self._file_modules.get(str(path))
        if cached is not None:
            return cached

        spec = importlib.util.spec_from_file_location(f"lavs_handler_{path.stem}", path)
        if spec is None or spec.loader is None:
            raise ImportError(f"Cannot create module spec for {path}")

        loaded = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(loaded)
        self._file_modules[str(path)] = loaded
        return loaded

    async def execute(
        self,
        handler: FunctionHandler,
        data: Any,
        context: ExecutionContext,
    ) -> Any:
        """Call the handler function and return its result.

        Raises:
            LAVSError: Timeout when the effective timeout expires,
                HandlerError when the function cannot be found or raises
        """
        started = time.monotonic()
        timeout_ms = self.permission_checker.get_effective_timeout(
            handler, context.permissions, self.default_timeout_ms
        )
        logger.info(
            "Executing function for %s/%s: %s:%s",
            context.agent_id,
            context.endpoint_id,
            handler.module,
            handler.function,
        )

        fn = self.resolve(handler, context.workdir)

        try:
            result = await asyncio.wait_for(
                self._invoke(fn, data, context), timeout=timeout_ms / 1000
            )
        except TimeoutError:
            raise LAVSError(
                LAVSErrorCode.TIMEOUT,
                f"Function execution timeout after {timeout_ms}ms",
                {"timeoutMs": timeout_ms},
            ) from None
        except LAVSError:
            raise
        except Exception as e:
            raise LAVSError(
                LAVSErrorCode.HANDLER_ERROR,
                f"Function execution failed: {e}",
                {"exceptionType": type(e).__name__},
            ) from e

        logger.info(
            "Function for %s completed in %.0fms",
            context.endpoint_id,
            (time.monotonic() - started) * 1000,
        )
        return result

    @staticmethod
    async def _invoke(fn: HandlerFunction, data: Any, context: ExecutionContext) -> Any:
        if inspect.iscoroutinefunction(fn):
            return await fn(data, context)
        result = await asyncio.to_thread(fn, data, context)
        if inspect.isawaitable(result):
            return await result
        return result
