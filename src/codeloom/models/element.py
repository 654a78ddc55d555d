"""ORM model for parsed code elements."""

from typing import Any

from sqlalchemy import Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from codeloom.models.base import Base


class CodeElementRecord(Base):
    __tablename__ = "code_elements"
    __table_args__ = (
        Index("ix_code_elements_file_path", "file_path"),
        Index("ix_code_elements_name", "name"),
    )

    id: Mapped[str] = mapped_column(String(700), primary_key=True)
    element_type: Mapped[str] = mapped_column(String(50))
    name: Mapped[str] = mapped_column(String(300))
    content: Mapped[str] = mapped_column(Text)
    file_path: Mapped[str] = mapped_column(String(500))
    start_line: Mapped[int] = mapped_column(Integer)
    end_line: Mapped[int] = mapped_column(Integer)
    language: Mapped[str | None] = mapped_column(String(50), nullable=True)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.element_type,
            "name": self.name,
            "content": self.content,
            "file_path": self.file_path,
            "start_line": self.start_line,
            "end_line": self.end_line,
            "language": self.language,
        }
