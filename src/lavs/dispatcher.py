"""The LAVS dispatch gateway.

:class:`Dispatcher` is the single entry point behind ``/lavs/:endpoint``. A
call moves through a fixed pipeline and any stage may end it with a
:class:`~lavs.errors.LAVSError`:

1. rate limit per ``agentId:endpointId``
2. load (or reuse) the agent's manifest
3. resolve the endpoint
4. validate input against ``schema.input``
5. merge manifest and endpoint permissions
6. pre-execution permission checks (script handlers)
7. execute the handler under the effective timeout
8. validate output against ``schema.output``
9. mutations notify the agent's subscribers with ``<endpoint>:mutated``

Nothing is retried. A failure ends only the call it happened in.
"""

from __future__ import annotations

import asyncio
import contextlib
import copy
import logging
import time
from typing import Any

from lavs.agents import AgentDirectoryResolver, is_valid_agent_id
from lavs.config.schema import LAVSConfig
from lavs.errors import LAVSError, LAVSErrorCode
from lavs.execution.context import ExecutionContext
from lavs.execution.function import FunctionExecutor
from lavs.execution.script import ScriptExecutor
from lavs.manifest.loader import ManifestLoader, ManifestStore
from lavs.manifest.schema import Endpoint, Manifest
from lavs.protocol import RPCResponse, http_status_for
from lavs.security.permissions import PermissionChecker
from lavs.security.rate_limiter import RateLimiter, rate_limit_key
from lavs.subscriptions.manager import SubscriptionEvent, SubscriptionManager
from lavs.subscriptions.sinks import SubscriptionSink
from lavs.validation import SchemaValidator

logger = logging.getLogger(__name__)


class Dispatcher:
    """Routes endpoint calls for every agent known to the resolver.

    All caches (manifests, compiled validators, rate limit windows) belong
    to the instance, so separate dispatchers never share state.

    Args:
        resolver: Maps agent ids to agent directories
        loader: Manifest reader
        manifests: Manifest cache
        validator: JSON Schema validator
        permission_checker: Permission policy
        script_executor: Runs ``script`` handlers
        function_executor: Runs ``function`` handlers
        rate_limiter: Per agent/endpoint limiter
        subscriptions: Subscription registry
        cleanup_interval: Seconds between sweeps of expired rate limit windows
    """

    def __init__(
        self,
        resolver: AgentDirectoryResolver,
        *,
        loader: ManifestLoader | None = None,
        manifests: ManifestStore | None = None,
        validator: SchemaValidator | None = None,
        permission_checker: PermissionChecker | None = None,
        script_executor: ScriptExecutor | None = None,
        function_executor: FunctionExecutor | None = None,
        rate_limiter: RateLimiter | None = None,
        subscriptions: SubscriptionManager | None = None,
        cleanup_interval: float = 300.0,
    ) -> None:
        self.resolver = resolver
        self.loader = loader or ManifestLoader()
        self.manifests = manifests or ManifestStore()
        self.validator = validator or SchemaValidator()
        self.permission_checker = permission_checker or PermissionChecker()
        self.script_executor = script_executor or ScriptExecutor(self.permission_checker)
        self.function_executor = function_executor or FunctionExecutor(self.permission_checker)
        self.rate_limiter = rate_limiter or RateLimiter()
        self.subscriptions = subscriptions or SubscriptionManager()
        self.cleanup_interval = cleanup_interval
        self._cleanup_task: asyncio.Task[None] | None = None

    @classmethod
    def from_config(cls, config: LAVSConfig) -> Dispatcher:
        """Wire a dispatcher and all of its components from configuration."""
        checker = PermissionChecker()
        return cls(
            AgentDirectoryResolver(
                config.agents.search_paths,
                manifest_filename=config.agents.manifest_filename,
            ),
            permission_checker=checker,
            script_executor=ScriptExecutor(
                checker,
                default_timeout_ms=config.execution.default_timeout_ms,
                kill_grace_ms=config.execution.kill_grace_ms,
            ),
            function_executor=FunctionExecutor(
                checker,
                default_timeout_ms=config.execution.default_timeout_ms,
            ),
            rate_limiter=RateLimiter(
                max_requests=config.rate_limit.max_requests,
                window_ms=config.rate_limit.window_ms,
            ),
            subscriptions=SubscriptionManager(
                max_subscriptions=config.subscriptions.max_subscriptions,
                heartbeat_interval=config.subscriptions.heartbeat_interval_s,
            ),
            cleanup_interval=config.rate_limit.cleanup_interval_s,
        )

    def get_manifest(self, agent_id: str) -> Manifest:
        """Return the agent's manifest, loading it on first use.

        Raises:
            LAVSError: InvalidRequest for unknown agents or a missing manifest
                file, ParseError for a malformed one
        """
        manifest = self.manifests.get(agent_id)
        if manifest is not None:
            return manifest

        manifest = self.loader.load(self.resolver.manifest_path(agent_id))
        self.manifests.put(agent_id, manifest)
        return manifest

    def get_endpoint(self, agent_id: str, endpoint_id: str) -> tuple[Manifest, Endpoint]:
        """Resolve an endpoint of an agent.

        Raises:
            LAVSError: MethodNotFound if the manifest has no such endpoint
        """
        manifest = self.get_manifest(agent_id)
        endpoint = manifest.get_endpoint(endpoint_id)
        if endpoint is None:
            raise LAVSError(
                LAVSErrorCode.METHOD_NOT_FOUND,
                f"Endpoint '{endpoint_id}' not found",
                {"agentId": agent_id, "endpointId": endpoint_id},
            )
        return manifest, endpoint

    async def call_endpoint(
        self,
        agent_id: str,
        endpoint_id: str,
        input: Any = None,
        caller_env: dict[str, str] | None = None,
    ) -> Any:
        """Run one endpoint call through the full pipeline.

        Args:
            agent_id: Agent owning the endpoint
            endpoint_id: Endpoint id from the manifest
            input: Call input; ``None`` is treated as an empty object
            caller_env: Extra environment for the handler (``LAVS_*`` keys
                are applied after handler-level entries)

        Returns:
            The handler's (validated) result

        Raises:
            LAVSError: For every failure along the pipeline
        """
        started = time.monotonic()
        logger.info("LAVS request %s/%s", agent_id, endpoint_id)

        limit = self.rate_limiter.check(rate_limit_key(agent_id, endpoint_id))
        if not limit.allowed:
            retry_after = self.rate_limiter.retry_after_s(limit)
            raise LAVSError(
                LAVSErrorCode.RATE_LIMIT_EXCEEDED,
                f"Rate limit exceeded. Try again in {retry_after} seconds.",
                {"retryAfter": retry_after},
            )

        manifest, endpoint = self.get_endpoint(agent_id, endpoint_id)
        if endpoint.method == "subscription":
            raise LAVSError(
                LAVSErrorCode.INVALID_REQUEST,
                f"Endpoint '{endpoint_id}' is a subscription; open it with subscribe",
                {"endpointId": endpoint_id},
            )

        data = {} if input is None else copy.deepcopy(input)
        self.validator.assert_valid_input(endpoint, data, scope=agent_id)

        permissions = self.permission_checker.merge_permissions(
            manifest.permissions, endpoint.permissions
        )
        agent_dir = str(self.resolver.resolve(agent_id))
        context = ExecutionContext(
            endpoint_id=endpoint_id,
            agent_id=agent_id,
            workdir=agent_dir,
            permissions=permissions,
            env=caller_env,
        )

        handler = endpoint.handler
        if handler.type == "script":
            self.permission_checker.assert_allowed(handler, permissions, agent_dir)
            result = await self.script_executor.execute(handler, data, context)
        elif handler.type == "function":
            result = await self.function_executor.execute(handler, data, context)
        else:
            raise LAVSError(
                LAVSErrorCode.METHOD_NOT_FOUND,
                f"Handler type '{handler.type}' is not yet implemented",
                {"handlerType": handler.type},
            )

        self.validator.assert_valid_output(endpoint, result, scope=agent_id)

        if endpoint.method == "mutation":
            notified = self.subscriptions.publish_to_agent(
                agent_id,
                SubscriptionEvent(type=f"{endpoint_id}:mutated", data=result),
            )
            if notified:
                logger.debug("Notified %d subscribers of %s:mutated", notified, endpoint_id)

        logger.info(
            "LAVS request %s/%s succeeded in %.0fms",
            agent_id,
            endpoint_id,
            (time.monotonic() - started) * 1000,
        )
        return result

    async def dispatch(
        self,
        agent_id: str,
        endpoint_id: str,
        input: Any = None,
        caller_env: dict[str, str] | None = None,
    ) -> tuple[int, RPCResponse]:
        """Call an endpoint and wrap the outcome in a JSON-RPC envelope.

        Never raises; this is what a transport layer serializes.

        Returns:
            (HTTP status, response envelope)
        """
        try:
            result = await self.call_endpoint(agent_id, endpoint_id, input, caller_env)
        except LAVSError as e:
            logger.warning("LAVS request %s/%s failed: %s", agent_id, endpoint_id, e.message)
            response = RPCResponse.from_exception(e)
        except Exception as e:
            logger.exception("Unexpected error in LAVS request %s/%s", agent_id, endpoint_id)
            response = RPCResponse.from_exception(e)
        else:
            response = RPCResponse.success(result)
        return http_status_for(response), response

    def subscribe(self, agent_id: str, endpoint_id: str, sink: SubscriptionSink) -> str:
        """Open a subscription on a ``subscription`` endpoint.

        Returns:
            Subscription id

        Raises:
            LAVSError: MethodNotFound for unknown endpoints, InvalidRequest
                for non-subscription endpoints, CapacityExceeded at the cap
        """
        _, endpoint = self.get_endpoint(agent_id, endpoint_id)
        if endpoint.method != "subscription":
            raise LAVSError(
                LAVSErrorCode.INVALID_REQUEST,
                f"Endpoint '{endpoint_id}' is not a subscription",
                {"endpointId": endpoint_id, "method": endpoint.method},
            )
        return self.subscriptions.subscribe(agent_id, endpoint_id, sink)

    def unsubscribe(self, subscription_id: str) -> bool:
        return self.subscriptions.unsubscribe(subscription_id)

    def publish(
        self,
        agent_id: str,
        endpoint_id: str,
        event: SubscriptionEvent | dict[str, Any],
    ) -> int:
        """Push an event to an endpoint's subscribers; returns how many got it."""
        return self.subscriptions.publish(agent_id, endpoint_id, event)

    def list_subscriptions(self, agent_id: str) -> list[dict[str, Any]]:
        return self.subscriptions.get_subscriptions_for_agent(agent_id)

    def clear_cache(self, agent_id: str | None = None) -> None:
        """Forget cached manifests, compiled validators and handler modules.

        With an agent id only that agent's manifest and the function modules
        loaded from its directory are dropped; validators are always rebuilt
        since they are cheap to recompile.
        """
        self.manifests.clear(agent_id)
        self.validator.clear_cache()
        if agent_id is None:
            self.function_executor.clear_cache()
        elif is_valid_agent_id(agent_id):
            for base in self.resolver.search_paths:
                self.function_executor.clear_cache(base / agent_id)
        logger.info("Cleared LAVS cache for %s", agent_id or "all agents")

    @property
    def cleanup_running(self) -> bool:
        """Whether the rate limit sweep started by :meth:`start` is active."""
        return self._cleanup_task is not None and not self._cleanup_task.done()

    def start(self) -> None:
        """Start sweeping expired rate limit windows every ``cleanup_interval`` seconds.

        Must be called from a running event loop. The sweep runs until
        :meth:`aclose`.
        """
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.get_running_loop().create_task(self._run_cleanup())

    async def _run_cleanup(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval)
            removed = self.rate_limiter.cleanup()
            if removed:
                logger.debug("Removed %d expired rate limit windows", removed)

    async def aclose(self) -> None:
        """Stop background tasks, close subscriptions and kill running scripts."""
        task, self._cleanup_task = self._cleanup_task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        await self.subscriptions.aclose()
        killed = await self.script_executor.terminate_all()
        if killed:
            logger.info("Killed %d running scripts on shutdown", killed)

    async def __aenter__(self) -> Dispatcher:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

