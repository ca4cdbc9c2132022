"""
Database-backed artifact store.

Uses SQLAlchemy for async database operations with SQLite by default, so
artifacts can live in a shared database instead of loose files.
"""

import json
from datetime import datetime
from typing import List, Optional

import structlog
from sqlalchemy import Column, DateTime, String, Text, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from airgap.config import AirgapConfig, get_config
from airgap.errors import ArtifactExistsError, ArtifactNotFoundError
from airgap.state.artifacts import ArtifactStore

logger = structlog.get_logger(__name__)

Base = declarative_base()


class ArtifactRecord(Base):
    """Database model for transaction artifacts."""

    __tablename__ = "artifacts"

    name = Column(String(255), primary_key=True)
    kind = Column(String(20), nullable=False, default="unsigned")
    sender_address = Column(String(66), nullable=True)
    nonce = Column(String(66), nullable=True)
    payload_json = Column(Text, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


def artifact_kind(data: dict) -> str:
    """Classify an artifact by its signature shape."""
    signature = data.get("signature")
    if not signature:
        return "unsigned"
    if len(signature) == 2:
        return "signed"
    if len(signature) == 3:
        return "partial"
    return "combined"


class DatabaseArtifactStore(ArtifactStore):
    """
    Async database interface for artifact persistence.

    Call connect() before use, or use init_artifact_database().
    """

    def __init__(self, config: Optional[AirgapConfig] = None):
        """
        Initialize database store.

        Args:
            config: Pipeline configuration
        """
        self.config = config or get_config()
        self._engine = None
        self._session_factory = None

    async def connect(self) -> None:
        """Initialize database connection and create tables."""
        self._engine = create_async_engine(
            self.config.database_url,
            echo=False,
        )

        self._session_factory = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        logger.info("database_connected", url=self.config.database_url.split("///")[0])

    async def close(self) -> None:
        """Close database connection."""
        if self._engine:
            await self._engine.dispose()
            self._engine = None
            logger.info("database_disconnected")

    def _get_session(self) -> AsyncSession:
        """Get a new database session."""
        if not self._session_factory:
            raise RuntimeError("Database not connected")
        return self._session_factory()

    async def save(self, name: str, data: dict, overwrite: bool = False) -> str:
        async with self._get_session() as session:
            existing = await session.get(ArtifactRecord, name)

            if existing:
                if not overwrite:
                    raise ArtifactExistsError(name)
                existing.kind = artifact_kind(data)
                existing.sender_address = data.get("sender_address")
                existing.nonce = data.get("nonce")
                existing.payload_json = json.dumps(data)
                existing.updated_at = datetime.utcnow()
            else:
                record = ArtifactRecord(
                    name=name,
                    kind=artifact_kind(data),
                    sender_address=data.get("sender_address"),
                    nonce=data.get("nonce"),
                    payload_json=json.dumps(data),
                )
                session.add(record)

            await session.commit()

        logger.debug("artifact_saved", name=name, backend="database")
        return name

    async def load(self, name: str) -> dict:
        async with self._get_session() as session:
            record = await session.get(ArtifactRecord, name)
            if not record:
                raise ArtifactNotFoundError(name)
            return json.loads(record.payload_json)

    async def exists(self, name: str) -> bool:
        async with self._get_session() as session:
            return await session.get(ArtifactRecord, name) is not None

    async def list_names(self, kind: Optional[str] = None) -> List[str]:
        """List stored artifact names, optionally filtered by kind."""
        async with self._get_session() as session:
            query = select(ArtifactRecord.name).order_by(ArtifactRecord.created_at)
            if kind:
                query = query.where(ArtifactRecord.kind == kind)
            result = await session.execute(query)
            return list(result.scalars().all())


async def init_artifact_database(config: Optional[AirgapConfig] = None) -> DatabaseArtifactStore:
    """
    Initialize and connect the database artifact store.

    Args:
        config: Pipeline configuration

    Returns:
        Connected DatabaseArtifactStore instance
    """
    store = DatabaseArtifactStore(config)
    await store.connect()
    return store
