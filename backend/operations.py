"""
Multi-step write helpers.

SQLite commits each step on its own, so an operation that spans several
statements (terminology save, team deletion) can stop half way. StepLedger
runs the steps in order, logs every completed step and, when one fails,
raises PartialOperationError naming what already happened so an operator
can finish or undo it by hand. Nothing is rolled back automatically.
"""

import logging
import sqlite3
from typing import Any, Callable, List, Optional

logger = logging.getLogger("operations")

# Template team: owns the terminology library every other team copies from.
DEFAULT_TEAM_ID = "8feef3dc-942f-4bc5-b526-0b39e14cb683"


class PartialOperationError(Exception):
    """A multi-step write failed after zero or more steps had completed."""

    def __init__(self, operation: str, completed: List[str], failed_step: str, cause: Exception):
        self.operation = operation
        self.completed = list(completed)
        self.failed_step = failed_step
        self.cause = cause
        done = ", ".join(completed) if completed else "none"
        super().__init__(
            f"{operation} failed at step '{failed_step}' ({cause}); completed steps: {done}"
        )


class StepLedger:
    """Ordered list of named steps with a record of which ones finished."""

    def __init__(self, operation: str, **context: Any):
        self.operation = operation
        self.context = context
        self.completed: List[str] = []

    def run(self, step: str, fn: Callable[[], Any]) -> Any:
        try:
            result = fn()
        except Exception as exc:
            logger.error(
                "%s %s: step '%s' failed after %s: %s",
                self.operation, self.context, step, self.completed or "no steps", exc,
            )
            raise PartialOperationError(self.operation, self.completed, step, exc) from exc
        self.completed.append(step)
        logger.info("%s %s: step '%s' done", self.operation, self.context, step)
        return result


def _delete_where(conn: sqlite3.Connection, sql: str, params: tuple) -> int:
    cur = conn.execute(sql, params)
    conn.commit()
    return cur.rowcount


def delete_team_cascade(conn: sqlite3.Connection, team_id: str, ledger: Optional[StepLedger] = None) -> dict:
    """Delete every team-scoped row, then the team itself.

    Order matters for the reconciliation trail: child tables first, team row
    last, so a failure never leaves orphaned rows pointing at a missing team.
    """
    if team_id == DEFAULT_TEAM_ID:
        raise ValueError("The default template team cannot be deleted")

    ledger = ledger or StepLedger("delete_team", team_id=team_id)
    counts = {}
    for table in ("terminology", "opponents", "scouting_reports", "playpool"):
        counts[table] = ledger.run(
            f"delete {table}",
            lambda t=table: _delete_where(conn, f"DELETE FROM {t} WHERE team_id = ?", (team_id,)),
        )
    counts["teams"] = ledger.run(
        "delete team",
        lambda: _delete_where(conn, "DELETE FROM teams WHERE id = ?", (team_id,)),
    )
    logger.info("Deleted team %s: %s", team_id, counts)
    return counts
