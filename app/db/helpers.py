"""Database session helpers."""

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session


def commit_and_refresh(db: Session, *instances) -> None:
    """Commit the transaction and refresh each given instance."""
    db.commit()
    for obj in instances:
        if obj is not None:
            db.refresh(obj)


def is_unique_violation(exc: IntegrityError, index_name: str | None = None) -> bool:
    """
    Return True only if the IntegrityError is a unique-constraint violation.

    Callers re-raise otherwise to avoid hiding real DB bugs (NOT NULL, foreign keys).
    When index_name is given and the driver reports a constraint name, it must match.
    """
    orig = exc.orig
    if orig is None:
        return False
    err_msg = str(orig).lower()
    # Postgres: SQLSTATE 23505 = unique_violation
    if getattr(orig, "pgcode", None) == "23505":
        constraint = getattr(getattr(orig, "diag", None), "constraint_name", None)
        if index_name and constraint:
            return constraint == index_name
        return True
    # SQLite: only the message text is available
    return "unique constraint" in err_msg
