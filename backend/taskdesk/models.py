from __future__ import annotations

import datetime as dt
import uuid

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

ACTIVITY_STATUSES = ("draft", "submitted")


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class SchemaVersion(Base):
    __tablename__ = "schema_version"

    id = Column(Integer, primary_key=True)
    version = Column(Integer, nullable=False, default=0)


class Client(Base):
    __tablename__ = "clients"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(200), nullable=False, unique=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
    last_used_at = Column(DateTime(timezone=True), nullable=True, index=True)

    activities = relationship("Activity", back_populates="client")


class Activity(Base):
    __tablename__ = "activities"

    id = Column(String(36), primary_key=True, default=new_id)
    date = Column(Date, nullable=False, index=True)
    client_id = Column(String(36), ForeignKey("clients.id"), nullable=True, index=True)
    title = Column(String(300), nullable=False)
    description = Column(Text, nullable=True)
    minutes = Column(Integer, nullable=False)
    reference_verbale = Column(String(120), nullable=True)
    resource_icon = Column(String(120), nullable=True)
    tags = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default="draft", index=True)
    in_gestore = Column(Boolean, nullable=False, default=False)
    verbale_done = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    client = relationship("Client", back_populates="activities")
    history = relationship(
        "ActivityHistory",
        back_populates="activity",
        cascade="all, delete-orphan",
        order_by="ActivityHistory.changed_at.desc()",
    )

    @property
    def client_name(self) -> str | None:
        return self.client.name if self.client is not None else None


class ActivityHistory(Base):
    __tablename__ = "activity_history"

    id = Column(String(36), primary_key=True, default=new_id)
    activity_id = Column(String(36), ForeignKey("activities.id"), nullable=False, index=True)
    summary = Column(Text, nullable=False)
    changed_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    activity = relationship("Activity", back_populates="history")


class ActivityTemplate(Base):
    __tablename__ = "activity_templates"

    id = Column(String(36), primary_key=True, default=new_id)
    title = Column(String(300), nullable=False)
    client_name = Column(String(200), nullable=True)
    description = Column(Text, nullable=True)
    minutes = Column(Integer, nullable=False)
    reference_verbale = Column(String(120), nullable=True)
    resource_icon = Column(String(120), nullable=True)
    tags = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
    used_count = Column(Integer, nullable=False, default=0)
    last_used_at = Column(DateTime(timezone=True), nullable=True, index=True)


class ExportRecord(Base):
    __tablename__ = "exports"

    id = Column(Integer, primary_key=True)
    format = Column(String(10), nullable=False)
    range_start = Column(Date, nullable=False)
    range_end = Column(Date, nullable=False)
    path = Column(String(255), nullable=False)
    checksum = Column(String(128), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class AppSetting(Base):
    __tablename__ = "app_settings"

    key = Column(String(100), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
