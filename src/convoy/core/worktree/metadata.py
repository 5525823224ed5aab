"""Ownership metadata written into every worktree Convoy creates.

The presence of ``<worktree>/<metadata dir>/managed.json`` is the only signal
that a worktree was created by Convoy and may be force-removed. Worktrees a
user created by hand never carry it.
"""
from __future__ import annotations

import logging
import os
import socket
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import psutil
from jsonschema import Draft202012Validator

from convoy.core.utils.io import read_json, write_json_atomic
from convoy.core.utils.time import utc_timestamp
from convoy.data import read_yaml

logger = logging.getLogger(__name__)

METADATA_FILENAME = "managed.json"
SCHEMA_VERSION = 1
TOOL_NAME = "convoy"


@dataclass(frozen=True)
class ManagedMetadata:
    repo_root: str
    worktree_path: str
    worker_id: str
    branch_name: str
    base_ref: str
    expected_commit: str
    created_at: str
    host: str
    pid: int
    tool: str = TOOL_NAME
    schema_version: int = SCHEMA_VERSION

    @classmethod
    def for_current_process(
        cls,
        *,
        repo_root: Path,
        worktree_path: Path,
        worker_id: str,
        branch_name: str,
        base_ref: str,
        expected_commit: str,
    ) -> "ManagedMetadata":
        return cls(
            repo_root=str(repo_root),
            worktree_path=str(worktree_path),
            worker_id=worker_id,
            branch_name=branch_name,
            base_ref=base_ref,
            expected_commit=expected_commit,
            created_at=utc_timestamp(),
            host=socket.gethostname(),
            pid=os.getpid(),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "schemaVersion": self.schema_version,
            "tool": self.tool,
            "repoRoot": self.repo_root,
            "worktreePath": self.worktree_path,
            "workerId": self.worker_id,
            "branchName": self.branch_name,
            "baseRef": self.base_ref,
            "expectedCommit": self.expected_commit,
            "createdAt": self.created_at,
            "host": self.host,
            "pid": self.pid,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ManagedMetadata":
        return cls(
            repo_root=data["repoRoot"],
            worktree_path=data["worktreePath"],
            worker_id=data["workerId"],
            branch_name=data["branchName"],
            base_ref=data["baseRef"],
            expected_commit=data["expectedCommit"],
            created_at=data["createdAt"],
            host=data["host"],
            pid=int(data["pid"]),
            tool=data["tool"],
            schema_version=int(data["schemaVersion"]),
        )

    def is_owner_alive(self) -> bool:
        """True when the creating process still runs on this host."""
        if self.host != socket.gethostname():
            return False
        return psutil.pid_exists(self.pid)


def metadata_path(worktree_path: Path, metadata_dir: str = ".convoy") -> Path:
    return Path(worktree_path) / metadata_dir / METADATA_FILENAME


def write_managed_metadata(worktree_path: Path, metadata: ManagedMetadata, *, metadata_dir: str = ".convoy") -> Path:
    path = metadata_path(worktree_path, metadata_dir)
    write_json_atomic(path, metadata.to_dict())
    return path


def has_managed_metadata(worktree_path: Path, *, metadata_dir: str = ".convoy") -> bool:
    return metadata_path(worktree_path, metadata_dir).is_file()


def read_managed_metadata(worktree_path: Path, *, metadata_dir: str = ".convoy") -> Optional[ManagedMetadata]:
    """Return the worktree's metadata, or None when absent or invalid."""
    path = metadata_path(worktree_path, metadata_dir)
    try:
        data = read_json(path, default=None)
    except (OSError, ValueError) as exc:
        logger.warning("Could not read managed metadata at %s: %s", path, exc)
        return None
    if data is None:
        return None
    validator = Draft202012Validator(read_yaml("schemas", "managed-metadata.schema.yaml"))
    errors = list(validator.iter_errors(data))
    if errors:
        logger.warning("Ignoring invalid managed metadata at %s: %s", path, errors[0].message)
        return None
    return ManagedMetadata.from_dict(data)


__all__ = [
    "ManagedMetadata",
    "METADATA_FILENAME",
    "has_managed_metadata",
    "metadata_path",
    "read_managed_metadata",
    "write_managed_metadata",
]
