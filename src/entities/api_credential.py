"""
Entity for owner-supplied external API credentials.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from src.core.clock import utcnow
from src.entities.base import Base


class ApiCredential(Base):
    """
    An API key registered by an owner.

    The key is stored in its encrypted envelope and decrypted only when a
    call is about to be made with it.
    """

    __tablename__ = "api_credentials"
    __table_args__ = (
        Index("ix_api_credentials_owner", "owner_id", "api_name", "is_active"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    owner_id: Mapped[str] = mapped_column(String(36), nullable=False)
    api_name: Mapped[str] = mapped_column(String(50), nullable=False, default="reed")
    encrypted_key: Mapped[str] = mapped_column(Text, nullable=False)
    label: Mapped[str | None] = mapped_column(String(100), nullable=True)

    daily_limit: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_unlimited: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow
    )
