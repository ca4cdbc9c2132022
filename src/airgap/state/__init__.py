"""
State Management module.

Handles persistence of transaction artifacts exchanged between machines.
"""

from airgap.state.artifacts import (
    ArtifactStore,
    FileArtifactStore,
    MemoryArtifactStore,
    combined_artifact_name,
    generate_artifact_name,
    signed_artifact_name,
)
from airgap.state.database import DatabaseArtifactStore, init_artifact_database

__all__ = [
    "ArtifactStore",
    "FileArtifactStore",
    "MemoryArtifactStore",
    "DatabaseArtifactStore",
    "init_artifact_database",
    "combined_artifact_name",
    "generate_artifact_name",
    "signed_artifact_name",
]
