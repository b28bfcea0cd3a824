"""
Dialect-aware database types.

UniversalJSON stores JSONB on PostgreSQL and plain JSON elsewhere.
JSONDict / JSONList wrap it with change tracking so in-place edits
(e.g. ``attempt.section_elapsed[key] = 30``) are flushed.
"""

from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.mutable import MutableDict, MutableList
from sqlalchemy.types import TypeDecorator
from sqlalchemy.engine import Dialect


class UniversalJSON(TypeDecorator):
    """JSONB for PostgreSQL, JSON for SQLite and others."""
    impl = JSON
    cache_ok = True

    def load_dialect_impl(self, dialect: Dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(JSONB())
        return dialect.type_descriptor(JSON())


JSONDict = MutableDict.as_mutable(UniversalJSON)
JSONList = MutableList.as_mutable(UniversalJSON)
