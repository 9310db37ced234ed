"""Parsing of script standard output into JSON values."""

from __future__ import annotations

import json
from typing import Any

from lavs.errors import LAVSError, LAVSErrorCode

_decoder = json.JSONDecoder()


def extract_json(text: str) -> Any:
    """Find the first decodable ``{...}`` or ``[...]`` value embedded in text.

    This is a heuristic for handlers that print log lines next to their
    result; output crafted to contain an earlier bracketed value will be
    picked up instead of the intended one.

    Raises:
        ValueError: If no JSON object or array can be decoded
    """
    for index, char in enumerate(text):
        if char not in "{[":
            continue
        try:
            value, _ = _decoder.raw_decode(text, index)
        except json.JSONDecodeError:
            continue
        return value
    raise ValueError("no JSON object or array found")


def parse_output(stdout: str, stderr: str = "") -> Any:
    """Parse handler stdout.

    Empty output yields ``None``. Otherwise the whole output must be JSON, or
    contain an embedded JSON object/array.

    Raises:
        LAVSError: HandlerError if no JSON can be recovered
    """
    trimmed = stdout.strip()
    if not trimmed:
        return None

    try:
        return json.loads(trimmed)
    except json.JSONDecodeError as e:
        parse_error = str(e)

    try:
        return extract_json(trimmed)
    except ValueError:
        pass

    raise LAVSError(
        LAVSErrorCode.HANDLER_ERROR,
        "Script output is not valid JSON",
        {"stdout": trimmed, "stderr": stderr, "parseError": parse_error},
    )
