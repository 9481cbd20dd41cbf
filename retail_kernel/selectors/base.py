"""
Module: retail_kernel.selectors.base
Responsibility: Abstract base class for all read-only query selectors.  Selectors
    form the query side of the kernel, giving structured read access to ledger,
    payment and drawer data without mutation capability.
Architecture position: Kernel > Selectors.  May import from db/, models/ and
    exceptions.  MUST NOT import from services/ or outer layers.

Invariants enforced:
    - Read-only access: Selectors accept a Session from the caller but MUST NOT
      call session.add(), session.delete(), session.commit(), or session.flush().
    - DTO return convention: Selectors return frozen dataclasses, NOT raw ORM
      model instances.
    - Session ownership: the caller owns the session and its transaction scope,
      so a selector sees exactly what the calling use case sees (including its
      own uncommitted writes).

Failure modes:
    - InvalidDateRangeError when a window ends before it starts.
    - InvalidPaginationError on out-of-range page arguments.
"""

from abc import ABC
from datetime import datetime
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from retail_kernel.db.base import Base
from retail_kernel.exceptions import InvalidDateRangeError, InvalidPaginationError

ModelType = TypeVar("ModelType", bound=Base)

MAX_PAGE_SIZE = 100


class BaseSelector(ABC, Generic[ModelType]):
    """
    Abstract base class for all selectors.

    Contract:
        Selectors accept a Session from the caller, perform read-only queries,
        and return DTOs or computed results.  They MUST NOT mutate any data.
    """

    def __init__(self, session: Session):
        self.session = session

    @staticmethod
    def _check_range(start: datetime, end: datetime) -> None:
        if end < start:
            raise InvalidDateRangeError(start, end)

    @staticmethod
    def _check_page(page: int, page_size: int) -> None:
        if page < 1 or not 1 <= page_size <= MAX_PAGE_SIZE:
            raise InvalidPaginationError(page, page_size)
