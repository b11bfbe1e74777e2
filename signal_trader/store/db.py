"""SQLite connection helper shared by the stores. One connection per operation."""

from __future__ import annotations
import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Union

from signal_trader.core.errors import InfrastructureError

logger = logging.getLogger("signal_trader.store")


class SqliteDB:
    """Base for stores backed by a SQLite file. Subclasses define SCHEMA."""

    SCHEMA: tuple = ()

    def __init__(self, path: Union[str, Path], timeout_s: float = 10.0):
        self.path = str(path)
        self.timeout_s = timeout_s
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        self._init()

    def _connect(self) -> sqlite3.Connection:
        con = sqlite3.connect(self.path, timeout=self.timeout_s)
        con.row_factory = sqlite3.Row
        con.execute("PRAGMA journal_mode=WAL")
        con.execute("PRAGMA synchronous=NORMAL")
        return con

    @contextmanager
    def _con(self) -> Iterator[sqlite3.Connection]:
        """Transaction scope: commit on success, rollback on error, always close."""
        try:
            con = self._connect()
        except sqlite3.Error as e:
            raise InfrastructureError(f"store unavailable at {self.path}: {e}") from e
        try:
            yield con
            con.commit()
        except sqlite3.IntegrityError:
            con.rollback()
            raise
        except sqlite3.Error as e:
            con.rollback()
            logger.error("SQLite error on %s: %s", self.path, e)
            raise InfrastructureError(f"store error at {self.path}: {e}") from e
        except Exception:
            con.rollback()
            raise
        finally:
            con.close()

    def _init(self) -> None:
        with self._con() as con:
            for statement in self.SCHEMA:
                con.execute(statement)
