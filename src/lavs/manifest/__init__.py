"""Manifest models and loading."""

from lavs.manifest.loader import MANIFEST_FILENAME, ManifestLoader, ManifestStore
from lavs.manifest.schema import (
    Endpoint,
    EndpointSchema,
    FunctionHandler,
    HttpHandler,
    Manifest,
    McpHandler,
    Permissions,
    ScriptHandler,
    ViewComponent,
    ViewConfig,
)

__all__ = [
    "MANIFEST_FILENAME",
    "Endpoint",
    "EndpointSchema",
    "FunctionHandler",
    "HttpHandler",
    "Manifest",
    "ManifestLoader",
    "ManifestStore",
    "McpHandler",
    "Permissions",
    "ScriptHandler",
    "ViewComponent",
    "ViewConfig",
]
