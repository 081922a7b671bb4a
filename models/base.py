"""
Declarative base and shared column types for the ORM models.

Every table gets a UUID primary key and creation/update timestamps. The UUID
type stores native UUIDs on PostgreSQL and 36-character strings elsewhere, so
the same models run against SQLite in tests.
"""

import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, String, TypeDecorator
from sqlalchemy.dialects.postgresql import UUID as PostgreSQLUUID
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class UUID(TypeDecorator):
    """
    Platform-independent UUID type.
    Uses PostgreSQL's UUID type when available,
    otherwise uses CHAR(36), storing as string.
    """
    impl = String
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PostgreSQLUUID(as_uuid=True))
        return dialect.type_descriptor(String(36))

    def process_bind_param(self, value, dialect):
        if value is None or dialect.name == "postgresql":
            return value
        return str(value)

    def process_result_value(self, value, dialect):
        if value is None or isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(value)


class BaseModel(Base):
    """
    Abstract base for persisted entities.

    :ivar id: Unique identifier for the record.
    :type id: UUID
    :ivar created_at: When the record was created. For chat messages this is
        also the ordinal position within the conversation.
    :type created_at: datetime
    :ivar updated_at: When the record was last updated.
    :type updated_at: datetime
    """
    __abstract__ = True

    id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
