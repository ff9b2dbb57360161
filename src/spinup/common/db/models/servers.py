"""
Database models for managed game servers.

A Server owns its Jobs and (for the custom adapter) its CustomScript; both
are removed with it.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel
from sqlalchemy import (
    JSON,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from spinup.common.db.models.base import Base

if TYPE_CHECKING:
    from spinup.common.db.models.jobs import Job


class ServerStatus(str, Enum):
    """Lifecycle states of a server. Written by the worker after creation."""

    CREATING = "CREATING"
    RUNNING = "RUNNING"
    STOPPED = "STOPPED"
    ERROR = "ERROR"
    DELETING = "DELETING"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Server(Base):
    """A game-server instance and the container that backs it."""

    __tablename__ = "servers"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    org_id: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(50), nullable=False)
    game_key: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=ServerStatus.CREATING.value, nullable=False
    )

    container_id: Mapped[str | None] = mapped_column(String(100))
    # Ordered list of {"container": int, "host": int, "proto": "tcp" | "udp"}
    ports: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)

    memory_cap: Mapped[int] = mapped_column(Integer, default=2048)  # MiB
    cpu_shares: Mapped[int] = mapped_column(Integer, default=1024)

    created_by: Mapped[str | None] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    jobs: Mapped[list[Job]] = relationship(
        "Job",
        back_populates="server",
        cascade="all, delete-orphan",
        order_by="Job.created_at",
    )
    custom_script: Mapped[CustomScript | None] = relationship(
        "CustomScript",
        back_populates="server",
        cascade="all, delete-orphan",
        uselist=False,
    )

    __table_args__ = (
        Index("idx_servers_org_id", "org_id"),
        Index("idx_servers_status", "status"),
    )

    def __repr__(self) -> str:
        return f"<Server(id={self.id}, name={self.name}, game={self.game_key}, status={self.status})>"

    @property
    def host_ports(self) -> set[int]:
        return {
            mapping["host"]
            for mapping in self.ports or []
            if isinstance(mapping, dict) and isinstance(mapping.get("host"), int)
        }


class CustomScript(Base):
    """Validated startup script for a server using the custom adapter."""

    __tablename__ = "custom_scripts"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    server_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("servers.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    content_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    # [{"container": int, "proto": "tcp" | "udp"}]
    port_specs: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)
    env_vars: Mapped[dict[str, str]] = mapped_column(JSON, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    server: Mapped[Server] = relationship("Server", back_populates="custom_script")

    def __repr__(self) -> str:
        return f"<CustomScript(server_id={self.server_id}, hash={self.content_hash[:12]})>"


class ServerPayload(BaseModel):
    """Serializable view of a server."""

    id: str
    org_id: str
    name: str
    game_key: str
    status: str
    container_id: str | None
    ports: list[dict[str, Any]]
    memory_cap: int
    cpu_shares: int
    created_by: str | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}
