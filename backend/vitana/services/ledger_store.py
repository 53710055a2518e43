# Overview: Atomic multi-statement execution over the ledger tables.

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from flask import current_app
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.sql import Executable

from ..extensions import db
from .concurrency import begin_write, run_with_retry
"""
Ledger Store Invariants (authoritative)

- A batch is an ordered list of statements applied in one transaction:
  all of them commit or none do.
- Statements run in the given order; later statements may rely on rows
  inserted by earlier ones (sale -> sale_items -> stock_movements).
- Batches serialize on the writer lock (BEGIN IMMEDIATE on SQLite, row locks
  elsewhere). There is no optimistic versioning.
- A statement may demand a minimum affected-row count. Falling short aborts
  the batch; this is how conditional stock decrements turn into
  InsufficientStock without a read-then-write race.
- Lock contention is retried with backoff. Any other database error becomes
  TransactionFailed (cause logged and chained). Domain errors from shortfall
  factories propagate unchanged, after the rollback.
"""


class TransactionFailed(Exception):
    """A batch could not be committed; nothing was written."""
    def __init__(self, message: str = "Transaction failed", details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


@dataclass(frozen=True)
class Statement:
    clause: Executable
    expect_rows: Optional[int] = None
    on_shortfall: Optional[Callable[[], Exception]] = None
    label: str = ""


def execute_atomic(statements: Iterable[Statement], *, attempts: int = 3) -> int:
    """
    Apply every statement or none of them. Returns the number applied.
    """
    batch = list(statements)

    def _op() -> int:
        begin_write()
        try:
            applied = 0
            for stmt in batch:
                result = db.session.execute(stmt.clause)
                if stmt.expect_rows is not None and result.rowcount < stmt.expect_rows:
                    if stmt.on_shortfall is not None:
                        raise stmt.on_shortfall()
                    raise TransactionFailed(
                        "Statement affected fewer rows than required",
                        details={"statement": stmt.label, "rowcount": result.rowcount},
                    )
                applied += 1
            db.session.commit()
            return applied
        except (OperationalError, StaleDataError):
            # run_with_retry rolls back and decides whether to try again
            raise
        except SQLAlchemyError as exc:
            db.session.rollback()
            current_app.logger.error("Atomic batch aborted: %s", exc)
            raise TransactionFailed() from exc
        except Exception:
            db.session.rollback()
            raise

    try:
        return run_with_retry(_op, attempts=attempts)
    except (OperationalError, StaleDataError) as exc:
        current_app.logger.error("Atomic batch gave up after %d attempts: %s", attempts, exc)
        raise TransactionFailed() from exc
