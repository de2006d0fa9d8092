"""Short URL mapping data models.

This module defines the UrlMapping table that stores the association between
an original URL and its short code, plus the schemas used to create and read it.
"""
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator
from sqlalchemy import BigInteger, Column, DateTime, Integer, String, Text, UniqueConstraint, func
from sqlmodel import Field, SQLModel

from shortlinks.core.config import SHORT_CODE_COLUMN_LENGTH


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UrlMappingBase(SQLModel):
    """Base model for short URL mapping data."""

    original_url: str = Field(
        description="The original (long) URL, compared byte-exact"
    )
    short_code: str = Field(
        max_length=SHORT_CODE_COLUMN_LENGTH,
        description="Unique code standing in for the original URL"
    )


class UrlMapping(UrlMappingBase, table=True):
    """
    Mapping between an original URL and its short code.

    Both columns carry a unique constraint; those constraints are what
    arbitrates concurrent writers. Rows are only ever inserted and read.
    """

    __tablename__ = "short_urls"

    # Constraint names are matched when classifying IntegrityError
    __table_args__ = (
        UniqueConstraint("original_url", name="uq_short_urls_original_url"),
        UniqueConstraint("short_code", name="uq_short_urls_short_code"),
    )

    id: Optional[int] = Field(
        default=None,
        sa_column=Column(
            # SQLite only autoincrements INTEGER PRIMARY KEY
            BigInteger().with_variant(Integer, "sqlite"),
            primary_key=True,
            autoincrement=True,
        ),
    )
    original_url: str = Field(sa_column=Column(Text, nullable=False))
    short_code: str = Field(
        sa_column=Column(String(SHORT_CODE_COLUMN_LENGTH), nullable=False)
    )
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(
            DateTime(timezone=True),
            nullable=False,
            server_default=func.now(),
        ),
    )


class UrlMappingCreate(UrlMappingBase):
    """Schema for inserting a new mapping."""
    pass


class UrlMappingRead(BaseModel):
    """Immutable snapshot of a persisted mapping handed to callers."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: int
    original_url: str
    short_code: str
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def assume_utc(cls, value: datetime) -> datetime:
        """SQLite returns naive timestamps; every stored timestamp is UTC."""
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
