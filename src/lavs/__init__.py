"""LAVS - agent-declared endpoints behind a policy-enforcing gateway.

An agent ships a ``lavs.json`` manifest listing query, mutation and
subscription endpoints, each backed by a script or a Python function. LAVS
validates calls against the declared JSON Schemas, runs handlers inside the
agent's directory under a time and file-access policy, and pushes mutation
events to subscribers over Server-Sent Events.

Key modules:

- :mod:`lavs.dispatcher` - Call pipeline (rate limit, validate, check, execute)
- :mod:`lavs.manifest` - Manifest models, loading and caching
- :mod:`lavs.validation` - JSON Schema validation of inputs and outputs
- :mod:`lavs.security` - Permission policy, environment filtering, rate limiting
- :mod:`lavs.execution` - Script and function handler executors
- :mod:`lavs.subscriptions` - SSE subscriptions and event fan-out
- :mod:`lavs.tools` - LLM tool definitions generated from endpoints
"""

__version__ = "0.1.0"
