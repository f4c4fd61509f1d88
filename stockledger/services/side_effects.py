import logging
from typing import Callable

from sqlalchemy.orm import Session, sessionmaker

from stockledger.errors import DownstreamSideEffectFailure

logger = logging.getLogger(__name__)


class SideEffects:
    """One-way dispatch of post-commit work (activity log, notifications, mail).

    Services queue effects while handling a request; ``run`` executes them
    afterwards, each in its own session. A failing effect is logged and
    dropped, it never reaches the caller and never touches the committed
    stock mutation.
    """

    def __init__(self, session_factory: sessionmaker | Callable[[], Session]):
        self._session_factory = session_factory
        self._tasks: list[tuple[str, Callable, tuple, dict]] = []

    def dispatch(self, name: str, func: Callable, *args, **kwargs) -> None:
        """Queue ``func(db, *args, **kwargs)``."""
        self._tasks.append((name, func, args, kwargs))

    @property
    def pending(self) -> list[str]:
        return [name for name, *_ in self._tasks]

    def run(self) -> list[str]:
        """Execute queued effects; return the names of the ones that failed."""
        failed = []
        tasks, self._tasks = self._tasks, []
        for name, func, args, kwargs in tasks:
            db = self._session_factory()
            try:
                func(db, *args, **kwargs)
                db.commit()
            except Exception as e:
                db.rollback()
                err = DownstreamSideEffectFailure(f"{name}: {e}")
                logger.error("Side effect failed: %s", err, exc_info=True)
                failed.append(name)
            finally:
                db.close()
        return failed
