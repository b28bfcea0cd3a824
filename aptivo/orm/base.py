"""
aptivo/orm/base.py
Declarative base and the abstract model every table inherits from.
"""
from datetime import datetime

from sqlalchemy import Column, Integer, DateTime
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp, the format stored in every DateTime column."""
    return datetime.utcnow()


class BaseModel(Base):
    """
    Abstract base model with id and audit timestamps.
    """
    __abstract__ = True

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)

    created_at = Column(
        DateTime,
        default=utcnow,
        nullable=False,
        index=True,
        comment="Timestamp when record was created"
    )

    updated_at = Column(
        DateTime,
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
        comment="Timestamp when record was last updated"
    )
