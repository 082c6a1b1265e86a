from typing import Iterable, Optional

from pydantic import BaseModel

from deskmate.domain.errors import NotFoundError
from deskmate.infrastructure.storage.base import StoredDocument

# Candidates beyond this prefix of the fetch order are never considered
MAX_CANDIDATES = 50


class Resolution(BaseModel):
    """Outcome of a fuzzy lookup; `found=False` is the not-found result"""
    found: bool
    query: str
    entity: Optional[StoredDocument] = None

    @property
    def title(self) -> Optional[str]:
        return self.entity.data.get("title") if self.entity else None

    def require(self, kind: str = "entity") -> StoredDocument:
        """The matched entity, or NotFoundError for callers that need one"""
        if not self.found or self.entity is None:
            raise NotFoundError(f"No {kind} matches \"{self.query}\"", {"query": self.query})
        return self.entity


def _title_of(candidate: StoredDocument, field: str) -> str:
    value = candidate.data.get(field)
    return value.strip().lower() if isinstance(value, str) else ""


def is_match(title: str, query: str) -> bool:
    """Bidirectional case-insensitive substring match; empty sides never match"""
    title, query = (title or "").strip().lower(), (query or "").strip().lower()
    if not title or not query:
        return False
    return query in title or title in query


def find(
    candidates: Iterable[StoredDocument],
    query: Optional[str],
    field: str = "title",
    limit: int = MAX_CANDIDATES,
) -> Resolution:
    """
    First candidate, in fetch order, whose title contains the query or is
    contained in it.

    Only the first `limit` candidates are examined. No match yields
    `Resolution(found=False)` rather than an exception.
    """

    query = (query or "").strip()
    if not query:
        return Resolution(found=False, query="")

    for index, candidate in enumerate(candidates):
        if index >= limit:
            break
        if is_match(_title_of(candidate, field), query):
            return Resolution(found=True, query=query, entity=candidate)

    return Resolution(found=False, query=query)
