"""SQLAlchemy ORM models for the code graph."""

from codeloom.models.base import Base
from codeloom.models.element import CodeElementRecord
from codeloom.models.relation import ElementRelationRecord

__all__ = ["Base", "CodeElementRecord", "ElementRelationRecord"]
