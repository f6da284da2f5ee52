from __future__ import annotations


class Author:
    """A single author of the library."""

    def __init__(self, id: int, first_name: str, last_name: str) -> None:
        self.id = id
        self.first_name = first_name
        self.last_name = last_name

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.first_name} {self.last_name} (#{self.id})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Author):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "firstName": self.first_name,
            "lastName": self.last_name,
        }

    @staticmethod
    def from_dict(data: dict) -> "Author":
        return Author(
            id=data["id"],
            first_name=data["firstName"],
            last_name=data["lastName"],
        )
