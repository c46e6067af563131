"""Service catalogue models: the parent rows media items hang off."""
from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

from sqlmodel import Field, SQLModel


class ServiceCategory(SQLModel, table=True):
    __tablename__ = "service_categories"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    name: str
    slug: str = Field(index=True, unique=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ServiceSubcategory(SQLModel, table=True):
    __tablename__ = "service_subcategories"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    category_id: str = Field(foreign_key="service_categories.id", index=True)
    name: str
    slug: str = Field(index=True)


class Service(SQLModel, table=True):
    __tablename__ = "services"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    category_id: str = Field(foreign_key="service_categories.id", index=True)
    subcategory_id: str | None = Field(default=None, foreign_key="service_subcategories.id")
    title: str
    description: str = Field(default="")
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
