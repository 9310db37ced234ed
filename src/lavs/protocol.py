"""JSON-RPC 2.0 envelopes for LAVS endpoint responses.

The HTTP layer serializes these models verbatim; the dispatcher produces them
via :meth:`RPCResponse.success` and :meth:`RPCResponse.from_exception`.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

from lavs.errors import LAVSError, LAVSErrorCode, error_code_to_http_status


class RPCError(BaseModel):
    """JSON-RPC 2.0 error object."""

    code: int = Field(..., description="Error code")
    message: str = Field(..., description="Error message")
    data: Any = Field(None, description="Additional error data")


class RPCResponse(BaseModel):
    """JSON-RPC 2.0 response envelope.

    Exactly one of ``result`` or ``error`` is meaningful. A successful call
    whose handler returned ``None`` still serializes ``"result": null``.
    """

    jsonrpc: Literal["2.0"] = "2.0"
    result: Any = None
    error: RPCError | None = None

    def is_success(self) -> bool:
        """Check if response is successful."""
        return self.error is None

    def to_wire(self) -> dict[str, Any]:
        """Serialize to the JSON body sent to callers."""
        if self.error is None:
            return {"jsonrpc": self.jsonrpc, "result": self.result}
        return {
            "jsonrpc": self.jsonrpc,
            "error": self.error.model_dump(exclude_none=True),
        }

    @classmethod
    def success(cls, result: Any) -> RPCResponse:
        """Create a success response."""
        return cls(result=result)

    @classmethod
    def from_error(
        cls,
        code: LAVSErrorCode | int,
        message: str,
        data: Any = None,
    ) -> RPCResponse:
        """Create an error response."""
        return cls(error=RPCError(code=int(code), message=message, data=data))

    @classmethod
    def from_exception(cls, exc: BaseException) -> RPCResponse:
        """Translate any exception into an error response.

        LAVS errors keep their code and data; anything else is reported as an
        internal error without leaking a traceback.
        """
        if isinstance(exc, LAVSError):
            return cls.from_error(exc.code, exc.message, exc.data)
        return cls.from_error(
            LAVSErrorCode.INTERNAL_ERROR,
            "Internal server error",
            {"detail": str(exc)},
        )


def http_status_for(response: RPCResponse) -> int:
    """Transport status for a response (200 on success)."""
    if response.error is None:
        return 200
    return error_code_to_http_status(response.error.code)
