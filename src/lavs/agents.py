"""Agent directory resolution."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from pathlib import Path

from lavs.errors import LAVSError, LAVSErrorCode
from lavs.manifest.loader import MANIFEST_FILENAME

logger = logging.getLogger(__name__)

AGENT_ID_PATTERN = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9._-]*$")


def is_valid_agent_id(agent_id: str) -> bool:
    """Check an agent id is a single safe path component."""
    return bool(AGENT_ID_PATTERN.match(agent_id)) and ".." not in agent_id


class AgentDirectoryResolver:
    """Map agent ids to directories under a list of search paths.

    The first search path containing a directory named after the agent wins.

    Args:
        search_paths: Directories holding one sub-directory per agent
        manifest_filename: Manifest file name inside an agent directory
    """

    def __init__(
        self,
        search_paths: Iterable[str | Path],
        manifest_filename: str = MANIFEST_FILENAME,
    ) -> None:
        self.search_paths = [Path(p).expanduser() for p in search_paths]
        self.manifest_filename = manifest_filename

    def resolve(self, agent_id: str) -> Path:
        """Return the absolute directory of an agent.

        Raises:
            LAVSError: InvalidRequest for unsafe ids or unknown agents
        """
        if not is_valid_agent_id(agent_id):
            raise LAVSError(
                LAVSErrorCode.INVALID_REQUEST,
                f"Invalid agent id: '{agent_id}'",
                {"agentId": agent_id},
            )

        for base in self.search_paths:
            candidate = base / agent_id
            if candidate.is_dir():
                return candidate.resolve()

        raise LAVSError(
            LAVSErrorCode.INVALID_REQUEST,
            f"Agent directory not found: '{agent_id}'",
            {"agentId": agent_id, "searchPaths": [str(p) for p in self.search_paths]},
        )

    def manifest_path(self, agent_id: str) -> Path:
        """Path of the agent's manifest file (which may not exist)."""
        return self.resolve(agent_id) / self.manifest_filename

    def has_manifest(self, agent_id: str) -> bool:
        try:
            return self.manifest_path(agent_id).is_file()
        except LAVSError:
            return False

    def list_agents(self) -> list[str]:
        """Ids of every agent directory that carries a manifest."""
        seen: list[str] = []
        for base in self.search_paths:
            if not base.is_dir():
                continue
            for entry in sorted(base.iterdir()):
                if entry.name in seen or not is_valid_agent_id(entry.name):
                    continue
                if (entry / self.manifest_filename).is_file():
                    seen.append(entry.name)
        return seen
