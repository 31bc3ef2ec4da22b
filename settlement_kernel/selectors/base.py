"""
Module: settlement_kernel.selectors.base
Responsibility: Abstract base class for all read-only query selectors, plus
    the paging and sorting helpers shared by the listing selectors.
Architecture position: Kernel > Selectors.  May import from db/, models/ and
    domain/dtos.py.  MUST NOT import from services/ or outer layers.
    Selectors NEVER create, modify, or delete data.

Invariants enforced:
    - Read-only access: Selectors accept a Session from the caller but MUST NOT
      call session.add(), session.delete(), session.commit(), or session.flush().
    - DTO return convention: Selectors return frozen dataclasses, never ORM
      instances.
    - Stable paging: every listing is ordered by a whitelisted column and
      then by primary key, so equal sort keys never shuffle between pages.
    - ``total`` is counted with the same predicate as the page itself.

Failure modes:
    - ValidationError for page < 1, page_size outside 1..max_page_size, an
      unknown sort field or direction.

Consistency:
    A listing is two statements (page, count).  Under concurrent writes the
    count may disagree with the page by the rows written in between; callers
    accept this.
"""

from abc import ABC
from typing import Generic, Mapping, TypeVar

from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session

from settlement_kernel.db.base import Base
from settlement_kernel.domain.dtos import Pagination, SortSpec
from settlement_kernel.exceptions import ValidationError

ModelType = TypeVar("ModelType", bound=Base)

DEFAULT_MAX_PAGE_SIZE = 100


class BaseSelector(ABC, Generic[ModelType]):
    """
    Abstract base class for all selectors.

    Contract:
        Selectors accept a Session from the caller, perform read-only queries,
        and return DTOs.  They MUST NOT mutate any data.

    Guarantees:
        - session is stored as a public attribute for subclass query use.
        - No commit, flush, add, or delete operations are performed.
    """

    def __init__(self, session: Session, max_page_size: int = DEFAULT_MAX_PAGE_SIZE):
        self.session = session
        self.max_page_size = max_page_size

    def _check_pagination(self, pagination: Pagination) -> None:
        if pagination.page < 1:
            raise ValidationError(f"page must be >= 1, got {pagination.page}")
        if not 1 <= pagination.page_size <= self.max_page_size:
            raise ValidationError(
                f"page_size must be between 1 and {self.max_page_size}, "
                f"got {pagination.page_size}"
            )

    @staticmethod
    def _order_by(stmt: Select, sort: SortSpec, columns: Mapping, tiebreak) -> Select:
        """Apply a whitelisted sort plus the primary-key tiebreak."""
        column = columns.get(sort.field)
        if column is None:
            raise ValidationError(
                f"Cannot sort by '{sort.field}'; allowed: {', '.join(sorted(columns))}"
            )
        direction = sort.direction.lower()
        if direction not in ("asc", "desc"):
            raise ValidationError(f"Sort direction must be asc or desc, got {sort.direction}")
        if direction == "asc":
            return stmt.order_by(column.asc(), tiebreak.asc())
        return stmt.order_by(column.desc(), tiebreak.desc())

    def _count(self, stmt: Select) -> int:
        return self.session.execute(
            select(func.count()).select_from(stmt.order_by(None).subquery())
        ).scalar_one()


def like_pattern(value: str) -> str:
    """Substring pattern for ILIKE with the LIKE wildcards escaped."""
    escaped = value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"
