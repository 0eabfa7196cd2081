from contextlib import contextmanager
import logging
from typing import Any, Iterator, Optional, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session

from errors import StoreUnavailable

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT")


class LedgerStore:
    """User-scoped access to the ledger tables behind one session.

    Every write goes through :meth:`atomic`: either the whole batch commits
    or nothing does.
    """

    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def get(self, model: type[ModelT], entity_id: int) -> Optional[ModelT]:
        try:
            obj = self.session.get(model, entity_id)
        except DBAPIError as exc:
            raise StoreUnavailable(str(exc.orig or exc)) from exc
        if obj is None or getattr(obj, "user_id", self.user_id) != self.user_id:
            return None
        return obj

    def list(
        self, model: type[ModelT], *criteria: Any, order_by: tuple = ()
    ) -> list[ModelT]:
        stmt = select(model).where(model.user_id == self.user_id, *criteria)
        if order_by:
            stmt = stmt.order_by(*order_by)
        try:
            return list(self.session.scalars(stmt).all())
        except DBAPIError as exc:
            raise StoreUnavailable(str(exc.orig or exc)) from exc

    def execute(self, stmt):
        try:
            return self.session.execute(stmt)
        except IntegrityError:
            raise
        except DBAPIError as exc:
            raise StoreUnavailable(str(exc.orig or exc)) from exc

    @contextmanager
    def atomic(self) -> Iterator[Session]:
        # Integrity errors are left for the caller to translate.
        try:
            yield self.session
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            raise
        except DBAPIError as exc:
            self.session.rollback()
            logger.warning(f"store_unavailable: error={exc.orig or exc}")
            raise StoreUnavailable(str(exc.orig or exc)) from exc
        except Exception:
            self.session.rollback()
            raise
