"""
Artifact storage.

Transactions move between machines as JSON artifacts. The pipeline talks
to an ArtifactStore so the same logic runs against the filesystem, memory
(tests) or a database.
"""

import copy
import json
import os
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional, Union

import structlog

from airgap.errors import ArtifactExistsError, ArtifactNotFoundError, ValidationError

logger = structlog.get_logger(__name__)

SIGNED_SUFFIX = "_signed"
MULTISIG_SIGNED_PREFIX = "tx_multisig_signed"


def artifact_timestamp(now: Optional[datetime] = None) -> str:
    """Filesystem-safe ISO timestamp, e.g. 2026-10-19T09-22-00-123Z."""
    now = now or datetime.utcnow()
    stamp = now.isoformat(timespec="milliseconds")
    return stamp.replace(":", "-").replace(".", "-") + "Z"


def generate_artifact_name(
    output_dir: str,
    operation: str,
    now: Optional[datetime] = None,
) -> str:
    """Name for a new unsigned transaction: <dir>/<operation>_<timestamp>.json"""
    return f"{output_dir}/{operation}_{artifact_timestamp(now)}.json"


def signed_artifact_name(unsigned_name: str) -> str:
    """Name of the signed counterpart: same directory, _signed suffix."""
    path = Path(unsigned_name)
    stem = path.stem if path.suffix == ".json" else path.name
    return str(path.with_name(f"{stem}{SIGNED_SUFFIX}.json"))


def combined_artifact_name(output_dir: str, now: Optional[datetime] = None) -> str:
    return f"{output_dir}/{MULTISIG_SIGNED_PREFIX}_{artifact_timestamp(now)}.json"


class ArtifactStore(ABC):
    """
    Abstract interface for artifact persistence.

    Stores never overwrite an existing artifact unless asked to.
    """

    @abstractmethod
    async def save(self, name: str, data: dict, overwrite: bool = False) -> str:
        """
        Persist an artifact.

        Args:
            name: Artifact name (a relative or absolute path for files)
            data: JSON-serialisable transaction record
            overwrite: Replace an existing artifact

        Returns:
            The name the artifact was stored under

        Raises:
            ArtifactExistsError: If it exists and overwrite is False
        """
        pass

    @abstractmethod
    async def load(self, name: str) -> dict:
        """
        Load an artifact.

        Raises:
            ArtifactNotFoundError: If no artifact has that name
        """
        pass

    @abstractmethod
    async def exists(self, name: str) -> bool:
        pass

    async def close(self) -> None:
        """Release resources held by the store."""
        return None


class FileArtifactStore(ArtifactStore):
    """Stores artifacts as pretty-printed JSON files."""

    def __init__(self, root: Union[str, Path] = "."):
        self.root = Path(root)

    def path_for(self, name: str) -> Path:
        path = Path(name)
        if path.is_absolute():
            return path
        return self.root / path

    async def save(self, name: str, data: dict, overwrite: bool = False) -> str:
        path = self.path_for(name)
        if path.exists() and not overwrite:
            raise ArtifactExistsError(name)

        path.parent.mkdir(parents=True, exist_ok=True)

        # Write to a sibling temp file first so readers never see half a file
        tmp_path = path.with_name(f".{path.name}.tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
            f.write("\n")
        os.replace(tmp_path, path)

        logger.debug("artifact_saved", path=str(path))
        return name

    async def load(self, name: str) -> dict:
        path = self.path_for(name)
        if not path.is_file():
            raise ArtifactNotFoundError(name)

        with open(path, "r", encoding="utf-8") as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as e:
                raise ValidationError(f"{name} is not valid JSON: {e}")

        if not isinstance(data, dict):
            raise ValidationError(f"{name} must contain a JSON object")
        return data

    async def exists(self, name: str) -> bool:
        return self.path_for(name).is_file()


class MemoryArtifactStore(ArtifactStore):
    """Keeps artifacts in a dict. Used by tests and dry runs."""

    def __init__(self):
        self.artifacts: Dict[str, dict] = {}

    async def save(self, name: str, data: dict, overwrite: bool = False) -> str:
        if name in self.artifacts and not overwrite:
            raise ArtifactExistsError(name)
        # Round-trip through JSON so stored data matches what a file would hold
        self.artifacts[name] = json.loads(json.dumps(data))
        return name

    async def load(self, name: str) -> dict:
        if name not in self.artifacts:
            raise ArtifactNotFoundError(name)
        return copy.deepcopy(self.artifacts[name])

    async def exists(self, name: str) -> bool:
        return name in self.artifacts
