"""Environment policy for spawned handler processes.

Host variables whose names look like secrets are dropped before a script is
spawned. Variables supplied explicitly by the caller (``context.env``) or the
manifest author (``handler.env``) are trusted and passed through untouched.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping
from typing import Any

logger = logging.getLogger(__name__)

LAVS_PREFIX = "LAVS_"

# Substrings (upper-case) that mark a variable name as sensitive
SENSITIVE_PATTERNS: tuple[str, ...] = (
    "SECRET",
    "TOKEN",
    "PASSWORD",
    "PASSWD",
    "CREDENTIAL",
    "PRIVATE_KEY",
    "API_KEY",
    "APIKEY",
    "ACCESS_KEY",
    "AWS_ACCESS_KEY",
    "AUTH",
)

# Names that are always inherited even if they would match a pattern
SAFE_VARS: frozenset[str] = frozenset(
    {
        "PATH",
        "HOME",
        "USER",
        "LANG",
        "LC_ALL",
        "TZ",
        "NODE_ENV",
        "SHELL",
        "TMPDIR",
        "TERM",
    }
)


def is_sensitive_name(name: str) -> bool:
    """Check whether a variable name should be withheld from handlers."""
    if name in SAFE_VARS or name.startswith(LAVS_PREFIX):
        return False
    upper = name.upper()
    return any(pattern in upper for pattern in SENSITIVE_PATTERNS)


def filter_sensitive_vars(env: Mapping[str, str]) -> dict[str, str]:
    """Drop variables whose names contain a sensitive keyword.

    Matching is a case-insensitive substring test. ``LAVS_*`` names and the
    safe-list are always kept.

    Args:
        env: Environment to filter

    Returns:
        New dictionary without sensitive variables
    """
    filtered = {key: value for key, value in env.items() if not is_sensitive_name(key)}
    dropped = len(env) - len(filtered)
    if dropped:
        logger.debug("Withheld %d sensitive environment variables", dropped)
    return filtered


def stringify_value(value: Any) -> str:
    """Render a JSON value the way handlers receive it in args and env."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, list | tuple | dict):
        return json.dumps(value)
    return str(value)


def input_to_env(data: Mapping[str, Any], prefix: str = "") -> dict[str, str]:
    """Flatten an input object into environment variables.

    Keys are upper-cased; nested objects are joined with ``_``
    (``{"user": {"name": "a"}}`` becomes ``USER_NAME=a``). ``None`` values
    are skipped.
    """
    env: dict[str, str] = {}
    for key, value in data.items():
        name = f"{prefix}_{key}" if prefix else str(key)
        if value is None:
            continue
        if isinstance(value, Mapping):
            env.update(input_to_env(value, name.upper()))
        else:
            env[name.upper()] = stringify_value(value)
    return env


def build_environment(
    *,
    agent_id: str,
    endpoint_id: str,
    context_env: Mapping[str, str] | None = None,
    handler_env: Mapping[str, str] | None = None,
    input_env: Mapping[str, str] | None = None,
    base_env: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Compose the environment for a handler process.

    Later layers override earlier ones:

    1. host environment (``base_env``, default ``os.environ``), filtered
    2. input-derived variables (cannot replace safe-listed or ``LAVS_*`` names)
    3. ``context_env``
    4. ``handler_env``
    5. ``LAVS_*`` entries of ``context_env``
    6. ``LAVS_AGENT_ID`` and ``LAVS_ENDPOINT_ID``
    """
    env = filter_sensitive_vars(os.environ if base_env is None else base_env)

    for key, value in (input_env or {}).items():
        if key in SAFE_VARS or key.startswith(LAVS_PREFIX):
            logger.debug("Ignoring input variable '%s' that would shadow a reserved name", key)
            continue
        env[key] = value

    env.update(context_env or {})
    env.update(handler_env or {})
    env.update({k: v for k, v in (context_env or {}).items() if k.startswith(LAVS_PREFIX)})
    env["LAVS_AGENT_ID"] = agent_id
    env["LAVS_ENDPOINT_ID"] = endpoint_id
    return env
