"""Permission enforcement for manifest-declared policies.

Everything here is pure decision logic: no process is spawned and no file is
opened. Violations raise ``PermissionDenied``; the boolean checks simply
answer the question asked.
"""

from __future__ import annotations

import os

from wcmatch import glob

from lavs.errors import LAVSError, LAVSErrorCode
from lavs.manifest.schema import FunctionHandler, Permissions, ScriptHandler

DEFAULT_TIMEOUT_MS = 30_000


# `*` stays inside one segment and a match never extends to directory contents
GLOB_FLAGS = glob.GLOBSTAR


def _normalize_relative(path: str) -> str:
    """Strip leading ``./`` segments and unify separators."""
    path = path.replace("\\", "/")
    while path.startswith("./"):
        path = path[2:]
    return path


def _has_path_separator(command: str) -> bool:
    return "/" in command or "\\" in command


class PermissionChecker:
    """Evaluates merged permissions against handler configuration."""

    def merge_permissions(
        self,
        manifest_permissions: Permissions | None = None,
        endpoint_permissions: Permissions | None = None,
    ) -> Permissions:
        """Merge manifest-level defaults with endpoint-level overrides.

        Each field takes the endpoint value when set, otherwise the manifest
        value, otherwise stays unset (unrestricted).

        Args:
            manifest_permissions: Manifest-wide defaults
            endpoint_permissions: Endpoint-specific overrides

        Returns:
            New merged permissions object
        """
        merged: dict[str, object] = {}
        for name in Permissions.model_fields:
            value = None
            if endpoint_permissions is not None:
                value = getattr(endpoint_permissions, name)
            if value is None and manifest_permissions is not None:
                value = getattr(manifest_permissions, name)
            if value is not None:
                merged[name] = value
        return Permissions(**merged)

    def check_path_traversal(self, target_path: str, allowed_base: str) -> None:
        """Ensure a path stays inside a base directory.

        Relative paths are resolved against ``allowed_base``; symlinks are
        followed on both sides.

        Args:
            target_path: Path to check (relative or absolute)
            allowed_base: Absolute base directory

        Raises:
            LAVSError: PermissionDenied if the path resolves outside the base
        """
        base = os.path.realpath(allowed_base)
        resolved = os.path.realpath(os.path.join(base, target_path))

        if resolved != base and not resolved.startswith(base.rstrip(os.sep) + os.sep):
            raise LAVSError(
                LAVSErrorCode.PERMISSION_DENIED,
                f"Path traversal detected: '{target_path}' resolves outside "
                f"allowed directory '{allowed_base}'",
                {"resolvedPath": resolved, "allowedBase": base},
            )

    def check_handler_cwd(self, handler: ScriptHandler, agent_dir: str) -> None:
        """Ensure a handler's declared working directory stays in the agent dir."""
        if not handler.cwd:
            return
        self.check_path_traversal(handler.cwd, agent_dir)

    def check_file_access(self, file_path: str, permissions: Permissions) -> bool:
        """Check whether ``fileAccess`` patterns allow a path.

        A matching ``!`` pattern denies no matter where it appears in the
        list. Otherwise any matching positive pattern allows, and a path no
        pattern matches is denied. Without patterns everything is allowed.

        Args:
            file_path: Path relative to the agent directory, with or without
                a leading ``./``
            permissions: Merged permissions

        Returns:
            True if access is allowed
        """
        patterns = permissions.file_access
        if not patterns:
            return True

        candidate = _normalize_relative(file_path)

        for pattern in patterns:
            if pattern.startswith("!"):
                if glob.globmatch(candidate, _normalize_relative(pattern[1:]), flags=GLOB_FLAGS):
                    return False

        for pattern in patterns:
            if not pattern.startswith("!"):
                if glob.globmatch(candidate, _normalize_relative(pattern), flags=GLOB_FLAGS):
                    return True

        return False

    def get_effective_timeout(
        self,
        handler: ScriptHandler | FunctionHandler,
        permissions: Permissions,
        default_timeout: int = DEFAULT_TIMEOUT_MS,
    ) -> int:
        """Resolve the timeout (ms) a handler actually runs under.

        A handler timeout is capped at ``maxExecutionTime``; with only one of
        them set that one wins; with neither the default applies. Zero or
        negative values are ignored.
        """
        handler_timeout = handler.timeout if handler.timeout and handler.timeout > 0 else None
        policy_max = (
            permissions.max_execution_time
            if permissions.max_execution_time and permissions.max_execution_time > 0
            else None
        )

        if handler_timeout is not None:
            if policy_max is not None:
                return min(handler_timeout, policy_max)
            return handler_timeout
        if policy_max is not None:
            return policy_max
        return default_timeout

    def assert_allowed(
        self,
        handler: ScriptHandler,
        permissions: Permissions,
        agent_dir: str,
    ) -> None:
        """Run every pre-execution check for a script handler.

        Raises:
            LAVSError: PermissionDenied if any check fails
        """
        self.check_handler_cwd(handler, agent_dir)

        if handler.command and _has_path_separator(handler.command):
            self.check_path_traversal(handler.command, agent_dir)
