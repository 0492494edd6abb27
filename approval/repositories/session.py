"""Session handling shared by the SQLAlchemy repositories."""
from contextlib import contextmanager
from typing import Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session as DBSession, scoped_session

from approval.exceptions import StoreError


class SessionRepository:
    """Holds the session a repository works in.

    When the session is a scoped_session, close() discards the calling
    thread's session so worker threads do not leak connections.
    """

    def __init__(self, db: Union[DBSession, scoped_session]):
        self.db = db

    def close(self) -> None:
        if isinstance(self.db, scoped_session):
            self.db.remove()

    @contextmanager
    def reading(self, operation: str):
        """Wrap a read so database failures surface as StoreError."""
        try:
            yield
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StoreError(operation, e) from e
