"""Protocol-based storage interface.

The SQL implementation satisfies this protocol structurally (no
inheritance). Test doubles can be plain classes matching the same
signatures.
"""

from collections.abc import Iterable, Sequence
from typing import Protocol

from codeloom.intelligence.schemas import CodeElement, ElementRelation


class CodeStore(Protocol):
    async def initialize(self) -> None: ...
    async def replace_file(
        self,
        file_path: str,
        elements: Sequence[CodeElement],
        relations: Sequence[ElementRelation],
    ) -> None: ...
    async def delete_file(self, file_path: str) -> list[str]: ...
    async def get_element(self, element_id: str) -> CodeElement | None: ...
    async def get_elements(
        self, element_ids: Sequence[str]
    ) -> list[CodeElement]: ...
    async def get_by_file(self, file_path: str) -> list[CodeElement]: ...
    async def find_ids_by_name(
        self, names: Iterable[str]
    ) -> dict[str, list[str]]: ...
    async def element_at(
        self, file_path: str, line: int
    ) -> CodeElement | None: ...
    async def relations_for(
        self, element_ids: Sequence[str], relation_types: Sequence[str]
    ) -> list[ElementRelation]: ...
    async def search_text(
        self, terms: Sequence[str], limit: int
    ) -> list[CodeElement]: ...
    async def count_elements(self) -> int: ...
