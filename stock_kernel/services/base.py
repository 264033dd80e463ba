"""
BaseService -- abstract base for all stock kernel write services.

Responsibility:
    Establishes the session-injection contract: every service receives
    a SQLAlchemy ``Session`` and only flushes.  The caller owns the
    transaction and decides when to commit.

    Also provides the conditional status claim used by every document
    lifecycle: a status change is one ``UPDATE ... WHERE status IN (...)``
    so that of two concurrent callers at most one wins the transition.

Failure modes:
    - A subclass that calls ``session.commit()`` breaks the caller's ability
      to group several operations into one unit of work.
"""

from abc import ABC
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any, Generic, TypeVar
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from stock_kernel.db.base import Base
from stock_kernel.db.engine import atomic
from stock_kernel.domain.workflow import Workflow
from stock_kernel.exceptions import (
    ConcurrentModificationError,
    InvalidStateTransitionError,
    NotFoundError,
)
from stock_kernel.logging_config import LogContext

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all kernel services.

    Guarantees:
        - The service never calls ``session.commit()`` or
          ``session.rollback()``.  Partial work is undone through savepoints
          (``stock_kernel.db.engine.atomic``).
    """

    def __init__(self, session: Session):
        self.session = session

    @contextmanager
    def _unit_of_work(self, operation: str, actor_id: UUID) -> Iterator[None]:
        """
        One savepoint-bracketed public operation.

        ``operation`` and ``actor_id`` are bound to the log context for the
        duration, so every line logged inside (ledger writes included)
        carries them.  A nested call keeps the outer operation name.
        """
        bound: dict[str, Any] = {"actor_id": actor_id}
        if LogContext.get("operation") is None:
            bound["operation"] = operation
        with LogContext.bind(**bound):
            with atomic(self.session):
                yield

    def _reload(self, model: type[ModelType], entity_id: UUID) -> ModelType | None:
        """Read ``entity_id`` bypassing any stale identity-map state."""
        return self.session.execute(
            select(model)
            .where(model.id == entity_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _claim_status(
        self,
        model: type[ModelType],
        entity_id: UUID,
        status_column: str,
        workflow: Workflow,
        action: str,
        not_found: Callable[[UUID], NotFoundError],
        values: dict[str, Any] | None = None,
        messages: dict[str, str] | None = None,
        from_states: tuple[str, ...] | None = None,
    ) -> str:
        """
        Move ``entity_id`` along ``workflow`` by ``action`` in one statement.

        Postconditions:
            - On success the row's status is the action's target state and
              ``values`` were written with it.  Returns the target state.

        Raises:
            not_found(entity_id): the row does not exist.
            InvalidStateTransitionError: the row is not in a source state of
                ``action``.  ``messages`` may map the current status to a
                custom message.  ``from_states`` narrows the accepted sources,
                so a caller that read the status first claims exactly that
                state.
        """
        column = getattr(model, status_column)
        to_state = workflow.target_for(action)
        sources = workflow.sources_for(action)
        if from_states is not None:
            sources = tuple(s for s in sources if s in from_states)
        stmt = (
            update(model)
            .where(model.id == entity_id)
            .where(column.in_(sources))
            .values({status_column: to_state, **(values or {})})
            .execution_options(synchronize_session=False)
        )
        if self.session.execute(stmt).rowcount == 1:
            return to_state

        current = self.session.execute(
            select(column).where(model.id == entity_id)
        ).scalar_one_or_none()
        if current is None:
            raise not_found(entity_id)
        current = str(getattr(current, "value", current))
        if current in workflow.sources_for(action):
            # Moved between the caller's read and this claim.
            raise ConcurrentModificationError(model.__name__, entity_id)
        raise InvalidStateTransitionError(
            model.__name__,
            entity_id,
            current,
            action,
            (messages or {}).get(current),
        )
