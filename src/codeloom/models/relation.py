"""Directed relation edges between code elements."""

from sqlalchemy import ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from codeloom.models.base import Base


class ElementRelationRecord(Base):
    __tablename__ = "element_relations"
    __table_args__ = (
        Index("ix_element_relations_to_id", "to_id"),
    )

    from_id: Mapped[str] = mapped_column(
        String(700),
        ForeignKey("code_elements.id", ondelete="CASCADE"),
        primary_key=True,
    )
    to_id: Mapped[str] = mapped_column(String(700), primary_key=True)
    relation_type: Mapped[str] = mapped_column(String(20), primary_key=True)
