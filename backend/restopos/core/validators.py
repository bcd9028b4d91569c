"""Reusable parameter validators and conditional-update utilities."""

from typing import Annotated, Any, Dict

from fastapi import Path, Query
from sqlalchemy import update
from sqlalchemy.orm import Session

from restopos.core.exceptions import ConflictError

# Positive integer ID validator for path parameters
PositiveIntId = Annotated[int, Path(gt=0, description="Resource ID (must be positive)")]

# Pagination query params
SkipQuery = Annotated[int, Query(ge=0, description="Number of items to skip")]
LimitQuery = Annotated[int, Query(ge=1, le=200, description="Maximum items to return")]


def compare_and_set(
    db: Session,
    model,
    row_id: int,
    expected_status: Any,
    values: Dict[str, Any],
    message: str = "Record was modified concurrently. Please refresh and try again.",
) -> None:
    """Apply ``values`` only if the row still has ``expected_status``.

    Issues ``UPDATE ... WHERE id = :id AND status = :expected``. When no row
    matches, another transaction got there first and ConflictError is raised.
    The caller owns the commit.
    """
    result = db.execute(
        update(model)
        .where(model.id == row_id, model.status == expected_status)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ConflictError(message)
