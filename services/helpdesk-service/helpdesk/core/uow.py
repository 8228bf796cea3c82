from sqlalchemy.orm import Session

# Session.info key present while a UnitOfWork has the session's transaction open.
ACTIVE_KEY = "unit_of_work"


class UnitOfWork:
    """
    Explicit transaction boundary around a Session.

    Used as a context manager: commits when the block exits cleanly and rolls
    back on any exception, which is re-raised. Code running inside the block
    (the state machine, the ledger, the session tracker) only flushes.
    """

    def __init__(self, db: Session):
        self.db = db
        self._active = False
        self._marked = False

    def begin(self) -> "UnitOfWork":
        if not self.db.in_transaction():
            self.db.begin()
        if ACTIVE_KEY not in self.db.info:
            self.db.info[ACTIVE_KEY] = self
            self._marked = True
        self._active = True
        return self

    def _finish(self) -> None:
        if self._marked:
            self.db.info.pop(ACTIVE_KEY, None)
            self._marked = False
        self._active = False

    def commit(self) -> None:
        try:
            self.db.commit()
        finally:
            self._finish()

    def rollback(self) -> None:
        try:
            self.db.rollback()
        finally:
            self._finish()

    def __enter__(self) -> "UnitOfWork":
        return self.begin()

    def __exit__(self, exc_type, exc, tb) -> bool:
        if not self._active:
            return False
        if exc_type is None:
            self.commit()
        else:
            self.rollback()
        return False


def in_unit_of_work(db: Session) -> bool:
    return ACTIVE_KEY in db.info
