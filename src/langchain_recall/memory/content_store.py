"""
Archival id → original turn text.
"""

from typing import Iterator

from ..errors import NotFound


class ContentStore:
    """In-memory content store sharing its id space with VectorIndex."""

    def __init__(self):
        self._contents: dict[int, str] = {}

    def put(self, id: int, content: str):
        if id in self._contents:
            raise ValueError(f"id {id} is already archived")
        self._contents[id] = content

    def get(self, id: int) -> str:
        try:
            return self._contents[id]
        except KeyError:
            raise NotFound(id) from None

    def __contains__(self, id) -> bool:
        return id in self._contents

    def __len__(self) -> int:
        return len(self._contents)

    def items(self) -> Iterator[tuple[int, str]]:
        return iter(self._contents.items())
