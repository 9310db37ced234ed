"""Pydantic models for lavs.json manifests.

Field names are snake_case in Python and camelCase on the wire
(``fileAccess``, ``maxExecutionTime``, ...). Models accept either form.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field

EndpointMethod = Literal["query", "mutation", "subscription"]
InputMode = Literal["args", "stdin", "env"]

ENDPOINT_METHODS: tuple[str, ...] = ("query", "mutation", "subscription")
INPUT_MODES: tuple[str, ...] = ("args", "stdin", "env")
HANDLER_TYPES: tuple[str, ...] = ("script", "function", "http", "mcp")
EXECUTABLE_HANDLER_TYPES: tuple[str, ...] = ("script", "function")


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        """Serialize with camelCase keys, dropping unset optional fields."""
        return self.model_dump(by_alias=True, exclude_none=True)


class Permissions(_WireModel):
    """Policy bounding what a handler may do.

    A field left as ``None`` means unrestricted for that dimension.
    """

    file_access: list[str] | None = Field(
        default=None,
        alias="fileAccess",
        description="Glob patterns relative to the agent directory; '!' prefix denies",
    )
    network_access: bool | None = Field(
        default=None, alias="networkAccess", description="Whether network access is allowed"
    )
    max_execution_time: int | None = Field(
        default=None, alias="maxExecutionTime", description="Execution time cap in milliseconds"
    )
    max_memory: int | None = Field(
        default=None, alias="maxMemory", description="Declared memory cap in bytes (not enforced)"
    )


class ScriptHandler(_WireModel):
    """Endpoint backed by an external process."""

    type: Literal["script"] = "script"
    command: str
    args: list[str] = Field(default_factory=list)
    cwd: str | None = None
    env: dict[str, str] | None = None
    input: InputMode = "args"
    timeout: int | None = Field(default=None, description="Timeout in milliseconds")


class FunctionHandler(_WireModel):
    """Endpoint backed by an in-process Python callable."""

    type: Literal["function"] = "function"
    module: str = Field(..., description="Dotted module path or .py file path")
    function: str = Field(..., description="Attribute name of the callable")
    timeout: int | None = Field(default=None, description="Timeout in milliseconds")


class HttpHandler(_WireModel):
    """Endpoint backed by a remote HTTP service (declared, not executable)."""

    type: Literal["http"] = "http"
    url: str
    method: str


class McpHandler(_WireModel):
    """Endpoint backed by an MCP tool (declared, not executable)."""

    type: Literal["mcp"] = "mcp"
    server: str
    tool: str


Handler = Annotated[
    ScriptHandler | FunctionHandler | HttpHandler | McpHandler,
    Field(discriminator="type"),
]


class EndpointSchema(_WireModel):
    """JSON Schemas for an endpoint's input and output."""

    input: dict[str, Any] | None = None
    output: dict[str, Any] | None = None


class Endpoint(_WireModel):
    """One callable operation declared in a manifest."""

    id: str
    method: EndpointMethod
    handler: Handler
    description: str | None = None
    io_schema: EndpointSchema | None = Field(default=None, alias="schema")
    permissions: Permissions | None = None

    @property
    def input_schema(self) -> dict[str, Any] | None:
        return self.io_schema.input if self.io_schema else None

    @property
    def output_schema(self) -> dict[str, Any] | None:
        return self.io_schema.output if self.io_schema else None


class ViewComponent(_WireModel):
    """UI component an agent ships alongside its endpoints."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    type: str
    path: str | None = None
    url: str | None = None


class ViewConfig(_WireModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    component: ViewComponent


class Manifest(_WireModel):
    """Per-agent declaration of callable endpoints and default permissions."""

    lavs: str = Field(default="1.0", description="Manifest format version")
    name: str
    version: str = "0.0.0"
    description: str | None = None
    endpoints: list[Endpoint] = Field(default_factory=list)
    permissions: Permissions | None = None
    view: ViewConfig | None = None

    def get_endpoint(self, endpoint_id: str) -> Endpoint | None:
        """Find an endpoint by id."""
        for endpoint in self.endpoints:
            if endpoint.id == endpoint_id:
                return endpoint
        return None
