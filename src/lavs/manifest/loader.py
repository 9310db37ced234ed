"""Manifest loading, structural validation and caching.

The loader turns a ``lavs.json`` file into a :class:`Manifest`. Structural
problems are reported as ``ParseError`` with a message naming the offending
field; a missing file is an ``InvalidRequest``.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from lavs.errors import LAVSError, LAVSErrorCode
from lavs.manifest.schema import ENDPOINT_METHODS, HANDLER_TYPES, INPUT_MODES, Manifest

logger = logging.getLogger(__name__)

MANIFEST_FILENAME = "lavs.json"


class ManifestLoader:
    """Reads and validates manifest files."""

    def load(self, path: str | Path) -> Manifest:
        """Load a manifest from disk.

        Args:
            path: Path to the manifest file

        Returns:
            Validated manifest with relative paths resolved against the
            manifest's directory

        Raises:
            LAVSError: InvalidRequest if the file is missing, ParseError if it
                is malformed or structurally invalid
        """
        path = Path(path)
        if not path.is_file():
            raise LAVSError(
                LAVSErrorCode.INVALID_REQUEST,
                f"Manifest file not found: {path}",
                {"path": str(path)},
            )

        try:
            raw = path.read_text(encoding="utf-8")
        except OSError as e:
            raise LAVSError(
                LAVSErrorCode.INVALID_REQUEST,
                f"Cannot read manifest file {path}: {e}",
            ) from e

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise LAVSError(
                LAVSErrorCode.PARSE_ERROR,
                f"Invalid JSON in manifest {path}: {e}",
                {"path": str(path)},
            ) from e

        manifest = self.parse(data, base_dir=path.parent.resolve())
        logger.info(
            "Loaded manifest '%s' from %s with %d endpoints",
            manifest.name,
            path,
            len(manifest.endpoints),
        )
        return manifest

    def parse(self, data: Any, base_dir: str | Path | None = None) -> Manifest:
        """Validate already-decoded manifest data.

        Args:
            data: Decoded JSON document
            base_dir: Directory relative paths are resolved against. If None,
                paths are left untouched.

        Returns:
            Validated manifest

        Raises:
            LAVSError: ParseError on any structural problem
        """
        _check_structure(data)

        try:
            manifest = Manifest.model_validate(data)
        except ValidationError as e:
            raise LAVSError(
                LAVSErrorCode.PARSE_ERROR,
                f"Invalid manifest: {_summarize_validation_error(e)}",
                {"errors": e.errors(include_url=False, include_context=False)},
            ) from e

        if base_dir is not None:
            _resolve_paths(manifest, Path(base_dir))
        return manifest


class ManifestStore:
    """Cache of loaded manifests keyed by agent id.

    Entries live until :meth:`clear` is called for the agent (for example
    when its manifest file changes) or for the whole store.
    """

    def __init__(self) -> None:
        self._manifests: dict[str, Manifest] = {}

    def init(self) -> None:
        """Reset the store to an empty state."""
        self._manifests = {}

    def get(self, agent_id: str) -> Manifest | None:
        return self._manifests.get(agent_id)

    def put(self, agent_id: str, manifest: Manifest) -> None:
        self._manifests[agent_id] = manifest

    def clear(self, agent_id: str | None = None) -> None:
        """Drop one agent's manifest, or every manifest when agent_id is None."""
        if agent_id is None:
            self._manifests.clear()
        else:
            self._manifests.pop(agent_id, None)

    def __contains__(self, agent_id: object) -> bool:
        return agent_id in self._manifests

    def __len__(self) -> int:
        return len(self._manifests)


def _parse_error(message: str) -> LAVSError:
    return LAVSError(LAVSErrorCode.PARSE_ERROR, f"Invalid manifest: {message}")


def _require_string(obj: dict[str, Any], key: str, where: str) -> None:
    value = obj.get(key)
    if not isinstance(value, str) or not value:
        raise _parse_error(f"{where} is missing required field '{key}'")


def _check_structure(data: Any) -> None:
    """Run the structural checks that produce field-specific messages."""
    if not isinstance(data, dict):
        raise _parse_error("manifest must be a JSON object")

    _require_string(data, "name", "manifest")

    endpoints = data.get("endpoints")
    if not isinstance(endpoints, list):
        raise _parse_error("'endpoints' must be an array")

    seen: set[str] = set()
    for index, endpoint in enumerate(endpoints):
        where = f"endpoint[{index}]"
        if not isinstance(endpoint, dict):
            raise _parse_error(f"{where} must be an object")

        _require_string(endpoint, "id", where)
        endpoint_id = endpoint["id"]
        where = f"endpoint '{endpoint_id}'"

        if endpoint_id in seen:
            raise _parse_error(f"Duplicate endpoint ID: '{endpoint_id}'")
        seen.add(endpoint_id)

        if endpoint.get("method") not in ENDPOINT_METHODS:
            raise _parse_error(
                f"{where} has invalid method {endpoint.get('method')!r} "
                f"(expected one of {', '.join(ENDPOINT_METHODS)})"
            )

        handler = endpoint.get("handler")
        if not isinstance(handler, dict):
            raise _parse_error(f"{where} is missing required field 'handler'")
        _check_handler(handler, where)


def _check_handler(handler: dict[str, Any], where: str) -> None:
    handler_type = handler.get("type")
    if handler_type not in HANDLER_TYPES:
        raise _parse_error(
            f"{where} has invalid handler type {handler_type!r} "
            f"(expected one of {', '.join(HANDLER_TYPES)})"
        )

    where = f"{where} {handler_type} handler"
    if handler_type == "script":
        _require_string(handler, "command", where)
        mode = handler.get("input", "args")
        if mode not in INPUT_MODES:
            raise _parse_error(
                f"{where} has invalid input mode {mode!r} (expected one of {', '.join(INPUT_MODES)})"
            )
    elif handler_type == "function":
        _require_string(handler, "module", where)
        _require_string(handler, "function", where)
    elif handler_type == "http":
        _require_string(handler, "url", where)
        _require_string(handler, "method", where)
    elif handler_type == "mcp":
        _require_string(handler, "server", where)
        _require_string(handler, "tool", where)


def _looks_like_file_module(module: str) -> bool:
    return module.endswith(".py") or "/" in module or "\\" in module


def _resolve_paths(manifest: Manifest, base_dir: Path) -> None:
    """Make relative handler and view paths absolute."""
    for endpoint in manifest.endpoints:
        handler = endpoint.handler
        if handler.type == "script" and handler.cwd and not Path(handler.cwd).is_absolute():
            handler.cwd = str((base_dir / handler.cwd).resolve())
        elif handler.type == "function" and _looks_like_file_module(handler.module):
            if not Path(handler.module).is_absolute():
                handler.module = str((base_dir / handler.module).resolve())

    view = manifest.view
    if view is not None and view.component.type == "local" and view.component.path:
        if not Path(view.component.path).is_absolute():
            view.component.path = str((base_dir / view.component.path).resolve())


def _summarize_validation_error(error: ValidationError) -> str:
    parts = []
    for err in error.errors():
        location = ".".join(str(p) for p in err["loc"]) or "manifest"
        parts.append(f"{location}: {err['msg']}")
    return "; ".join(parts)
