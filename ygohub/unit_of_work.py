import logging

from sqlalchemy.exc import IntegrityError

from .errors import IntegrityViolation

logger = logging.getLogger(__name__)

_DEPTH_KEY = 'ygohub.uow_depth'
_CALLBACKS_KEY = 'ygohub.uow_after_commit'


class UnitOfWork:
    """
    Transaction scope for one logical operation.

    Commits when the outermost block exits cleanly and rolls back
    everything on any exception. Nested blocks on the same session join
    the outer one, so helpers can open their own scope and still be part
    of the caller's transaction.
    """

    def __init__(self, session):
        self.session = session

    @property
    def depth(self) -> int:
        return self.session.info.get(_DEPTH_KEY, 0)

    @property
    def is_outermost(self) -> bool:
        return self.depth == 1

    def __enter__(self) -> "UnitOfWork":
        self.session.info[_DEPTH_KEY] = self.depth + 1
        if self.is_outermost:
            self.session.info[_CALLBACKS_KEY] = []
        return self

    def __exit__(self, exc_type, exc, tb):
        outermost = self.is_outermost
        self.session.info[_DEPTH_KEY] = self.depth - 1

        if not outermost:
            return False

        callbacks = self.session.info.pop(_CALLBACKS_KEY, [])

        if exc_type is not None:
            self.session.rollback()
            logger.debug(f"Rolled back unit of work after {exc_type.__name__}")
            return False

        try:
            self.session.commit()
        except IntegrityError as e:
            self.session.rollback()
            raise IntegrityViolation(f"Write rejected by database constraint: {e.orig}") from e
        except Exception:
            self.session.rollback()
            raise

        for callback in callbacks:
            callback()
        return False

    def flush(self):
        """Flush pending rows so generated ids are available."""
        try:
            self.session.flush()
        except IntegrityError as e:
            raise IntegrityViolation(f"Write rejected by database constraint: {e.orig}") from e

    def after_commit(self, callback):
        """Run callback once the outermost block has committed."""
        self.session.info.setdefault(_CALLBACKS_KEY, []).append(callback)
