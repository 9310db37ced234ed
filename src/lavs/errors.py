"""Structured errors raised by the LAVS core.

Every failure that crosses the public boundary of the gateway is a
:class:`LAVSError` carrying one of the :class:`LAVSErrorCode` values. The
numeric codes follow JSON-RPC 2.0; gateway-specific conditions live in the
implementation-defined -32000 to -32099 range.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class LAVSErrorCode(int, Enum):
    """JSON-RPC 2.0 and LAVS-specific error codes."""

    # Standard JSON-RPC 2.0 errors
    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603

    # LAVS-specific errors (-32000 to -32099)
    RATE_LIMIT_EXCEEDED = -32000
    PERMISSION_DENIED = -32001
    TIMEOUT = -32002
    HANDLER_ERROR = -32003
    CAPACITY_EXCEEDED = -32004


HTTP_STATUS_BY_CODE: dict[LAVSErrorCode, int] = {
    LAVSErrorCode.PARSE_ERROR: 400,
    LAVSErrorCode.INVALID_REQUEST: 400,
    LAVSErrorCode.INVALID_PARAMS: 400,
    LAVSErrorCode.METHOD_NOT_FOUND: 404,
    LAVSErrorCode.PERMISSION_DENIED: 403,
    LAVSErrorCode.RATE_LIMIT_EXCEEDED: 429,
    LAVSErrorCode.TIMEOUT: 504,
    LAVSErrorCode.CAPACITY_EXCEEDED: 503,
    LAVSErrorCode.HANDLER_ERROR: 500,
    LAVSErrorCode.INTERNAL_ERROR: 500,
}


class LAVSError(Exception):
    """Error raised by any LAVS core operation.

    Attributes:
        code: Error code from the LAVS taxonomy
        message: Human-readable description
        data: Optional structured details (exit codes, validation errors, ...)
    """

    def __init__(
        self,
        code: LAVSErrorCode,
        message: str,
        data: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data

    @property
    def http_status(self) -> int:
        """Transport status code typically used for this error."""
        return error_code_to_http_status(self.code)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-RPC error object."""
        payload: dict[str, Any] = {"code": self.code.value, "message": self.message}
        if self.data is not None:
            payload["data"] = self.data
        return payload

    def __repr__(self) -> str:
        return f"LAVSError({self.code.name}, {self.message!r})"


def error_code_to_http_status(code: LAVSErrorCode | int) -> int:
    """Map an error code to an HTTP status.

    Unknown codes map to 500.
    """
    try:
        return HTTP_STATUS_BY_CODE[LAVSErrorCode(code)]
    except ValueError:
        return 500
