"""Expose LAVS endpoints as LLM tool definitions.

Every ``query`` and ``mutation`` endpoint of an agent becomes one tool named
``lavs_<endpoint id>`` whose parameters are the endpoint's input schema.
Subscriptions are push channels and have no tool form.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from lavs.errors import LAVSError, LAVSErrorCode
from lavs.manifest.schema import Endpoint, Manifest

if TYPE_CHECKING:
    from lavs.dispatcher import Dispatcher

logger = logging.getLogger(__name__)

TOOL_NAME_PREFIX = "lavs_"
TOOL_METHODS = ("query", "mutation")

ToolExecutor = Callable[[dict[str, Any]], Awaitable[Any]]


@dataclass
class ToolDefinition:
    """JSON Schema representation of an endpoint for LLM function calling."""

    name: str
    description: str
    input_schema: dict[str, Any]

    def to_openai_format(self) -> dict[str, Any]:
        """Convert to OpenAI function calling format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.input_schema,
            },
        }

    def to_anthropic_format(self) -> dict[str, Any]:
        """Convert to Anthropic tool use format."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }


@dataclass
class GeneratedTool:
    """A tool definition bound to the endpoint call that implements it."""

    definition: ToolDefinition
    agent_id: str
    endpoint_id: str
    fn: ToolExecutor

    @property
    def name(self) -> str:
        return self.definition.name

    async def execute(self, params: dict[str, Any] | None = None) -> Any:
        """Call the endpoint with the tool arguments."""
        return await self.fn(params or {})


def tool_name(endpoint_id: str) -> str:
    return f"{TOOL_NAME_PREFIX}{endpoint_id}"


def build_definition(endpoint: Endpoint, manifest: Manifest) -> ToolDefinition:
    """Build the tool definition for one endpoint.

    Raises:
        LAVSError: InvalidRequest when the input schema is not an object schema
    """
    schema = endpoint.input_schema
    if schema is None:
        parameters: dict[str, Any] = {"type": "object", "properties": {}}
    else:
        if schema.get("type") != "object":
            raise LAVSError(
                LAVSErrorCode.INVALID_REQUEST,
                f"Endpoint '{endpoint.id}' input schema must be an object to be used as a tool",
                {"endpointId": endpoint.id, "schemaType": schema.get("type")},
            )
        parameters = copy.deepcopy(schema)
        parameters.setdefault("properties", {})

    description = endpoint.description or f"Call {endpoint.id} endpoint from {manifest.name}"
    return ToolDefinition(name=tool_name(endpoint.id), description=description, input_schema=parameters)


class ToolGenerator:
    """Turns an agent's manifest into executable tools.

    Args:
        dispatcher: Dispatcher the generated tools call through, so every
            tool call gets the same checks as a direct endpoint call
    """

    def __init__(self, dispatcher: Dispatcher) -> None:
        self.dispatcher = dispatcher

    def has_lavs(self, agent_id: str) -> bool:
        """Whether the agent ships a manifest."""
        return self.dispatcher.resolver.has_manifest(agent_id)

    def generate_tools(self, agent_id: str) -> list[GeneratedTool]:
        """Build one tool per query/mutation endpoint of an agent.

        Returns:
            Generated tools, empty when the agent has no manifest
        """
        if not self.has_lavs(agent_id):
            logger.debug("Agent %s has no manifest; no tools generated", agent_id)
            return []

        manifest = self.dispatcher.get_manifest(agent_id)
        tools = [
            GeneratedTool(
                definition=build_definition(endpoint, manifest),
                agent_id=agent_id,
                endpoint_id=endpoint.id,
                fn=self._make_executor(agent_id, endpoint.id),
            )
            for endpoint in manifest.endpoints
            if endpoint.method in TOOL_METHODS
        ]
        logger.info("Generated %d tools for agent %s", len(tools), agent_id)
        return tools

    def _make_executor(self, agent_id: str, endpoint_id: str) -> ToolExecutor:
        async def execute(params: dict[str, Any]) -> Any:
            return await self.dispatcher.call_endpoint(agent_id, endpoint_id, params)

        return execute
