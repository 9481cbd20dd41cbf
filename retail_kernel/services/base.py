"""
BaseService -- abstract base for kernel services.

Responsibility:
    Common constructor for services that write through a caller-owned
    SQLAlchemy ``Session`` and an injected ``Clock``.

Architecture position:
    Kernel > Services -- imperative shell.

Invariants enforced:
    - Services flush; they never commit.  Only the orchestrating service
      method marked with ``auto_commit`` (or the caller's session_scope)
      ends a transaction, so every multi-write unit is atomic.
"""

from abc import ABC
from enum import Enum
from typing import TypeVar

from sqlalchemy.orm import Session

from retail_kernel.domain.clock import Clock, SystemClock
from retail_kernel.exceptions import InvalidActorError, InvalidChoiceError

E = TypeVar("E", bound=Enum)


def check_actor(role: str, actor_id: int | None) -> int:
    """
    Raises:
        InvalidActorError: actor_id missing or not a positive user id.
    """
    if actor_id is None or actor_id <= 0:
        raise InvalidActorError(role, actor_id)
    return actor_id


def check_choice(enum_cls: type[E], field: str, value: object) -> E:
    """
    Raises:
        InvalidChoiceError: value is not a member of enum_cls.
    """
    try:
        return enum_cls(value)
    except ValueError:
        raise InvalidChoiceError(field, value, [m.value for m in enum_cls]) from None


class BaseService(ABC):
    """
    Abstract base class for kernel services.

    Contract:
        Accepts a SQLAlchemy ``Session`` from the caller and uses
        ``session.flush()`` to persist changes within the active
        transaction.

    Non-goals:
        - Read-only queries belong in ``retail_kernel/selectors/``.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self.clock = clock or SystemClock()
