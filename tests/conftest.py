"""Pytest configuration and shared fixtures."""

import json
from pathlib import Path

import pytest
import pytest_asyncio

from lavs.agents import AgentDirectoryResolver
from lavs.config.schema import LAVSConfig
from lavs.dispatcher import Dispatcher


NOTES_HANDLERS = '''
import asyncio

NOTES = []


def list_notes(input, context):
    return {"notes": list(NOTES), "agent": context.agent_id}


async def add_note(input, context):
    NOTES.append(input["text"])
    return {"count": len(NOTES), "tags": input["tags"]}


def bad_output(input, context):
    return {"count": "many"}


def explode(input, context):
    raise RuntimeError("kaboom")


async def slow(input, context):
    await asyncio.sleep(5)
'''


def _function(name, **extra):
    return {"type": "function", "module": "./handlers.py", "function": name, **extra}


NOTES_MANIFEST = {
    "lavs": "1.0",
    "name": "Notes",
    "version": "1.2.0",
    "description": "Keeps short notes",
    "endpoints": [
        {
            "id": "listNotes",
            "method": "query",
            "description": "List all notes",
            "handler": _function("list_notes"),
        },
        {
            "id": "addNote",
            "method": "mutation",
            "handler": _function("add_note"),
            "schema": {
                "input": {
                    "type": "object",
                    "properties": {
                        "text": {"type": "string", "description": "Note text"},
                        "tags": {"type": "array", "default": []},
                    },
                    "required": ["text"],
                },
                "output": {
                    "type": "object",
                    "properties": {"count": {"type": "integer"}},
                    "required": ["count"],
                },
            },
        },
        {
            "id": "badOutput",
            "method": "query",
            "handler": _function("bad_output"),
            "schema": {
                "output": {"type": "object", "properties": {"count": {"type": "integer"}}}
            },
        },
        {"id": "explode", "method": "query", "handler": _function("explode")},
        {"id": "slow", "method": "query", "handler": _function("slow", timeout=100)},
        {
            "id": "echo",
            "method": "query",
            "handler": {"type": "script", "command": "sh", "args": ["-c", "cat"], "input": "stdin"},
        },
        {
            "id": "whoami",
            "method": "query",
            "handler": {
                "type": "script",
                "command": "sh",
                "args": [
                    "-c",
                    'printf \'{"agent": "%s", "session": "%s"}\' "$LAVS_AGENT_ID" "$LAVS_SESSION"',
                ],
            },
        },
        {
            "id": "escape",
            "method": "query",
            "handler": {"type": "script", "command": "sh", "args": ["-c", "echo {}"], "cwd": "../"},
        },
        {
            "id": "remote",
            "method": "query",
            "handler": {"type": "http", "url": "http://localhost:9/notes", "method": "GET"},
        },
        {"id": "changes", "method": "subscription", "handler": _function("list_notes")},
    ],
}


@pytest.fixture
def agents_root(tmp_path: Path) -> Path:
    """Directory holding one sub-directory per agent."""
    root = tmp_path / "agents"
    root.mkdir()
    return root


@pytest.fixture
def make_agent(agents_root: Path):
    """Create an agent directory with a manifest and extra files."""

    def _make(agent_id: str, manifest: dict | None, files: dict[str, str] | None = None) -> Path:
        agent_dir = agents_root / agent_id
        agent_dir.mkdir()
        if manifest is not None:
            (agent_dir / "lavs.json").write_text(json.dumps(manifest))
        for name, content in (files or {}).items():
            path = agent_dir / name
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content)
        return agent_dir

    return _make


@pytest.fixture
def notes_agent(make_agent) -> Path:
    """The ``notes`` agent used by dispatcher and tool tests."""
    return make_agent("notes", NOTES_MANIFEST, {"handlers.py": NOTES_HANDLERS})


@pytest_asyncio.fixture
async def dispatcher(agents_root: Path):
    """Dispatcher over the temporary agents root, closed after the test."""
    d = Dispatcher(AgentDirectoryResolver([agents_root]))
    yield d
    await d.aclose()


@pytest.fixture
def default_config() -> LAVSConfig:
    """Provide a default configuration for tests."""
    return LAVSConfig()
