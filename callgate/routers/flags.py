"""Flag moderation API endpoints."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from callgate.core.config import settings
from callgate.core.deps import get_db
from callgate.core.rate_limit import limiter
from callgate.db.enums import FlagStatus
from callgate.schemas.flag import (
    FlagCreate,
    FlagRaiseRead,
    FlagRead,
    FlagStatsRead,
    FlagStatusUpdate,
    ViolationResetRequest,
)
from callgate.services import flag_service
from callgate.services.flag_service import (
    FlagNotFoundError,
    FlagResult,
    InvalidFlagTransitionError,
)
from callgate.services.user_service import UserNotFoundError

router = APIRouter(prefix="/flags", tags=["flags"])


def flag_result_to_response(result: FlagResult) -> FlagRaiseRead:
    return FlagRaiseRead(
        created=result.created,
        flags_received=result.flags_received,
        suspended=result.suspended,
        flag=FlagRead.model_validate(result.flag) if result.flag else None,
        duplicate_of=result.duplicate_of,
    )


# =============================================================================
# Raise / Moderate
# =============================================================================


@router.post("", response_model=FlagRaiseRead)
@limiter.limit(settings.RATE_LIMIT_FLAGS)
def raise_flag(request: Request, data: FlagCreate, db: Session = Depends(get_db)):
    """Raise a flag. Duplicates inside the debounce window return created=false."""
    try:
        result = flag_service.raise_flag(
            db,
            target_id=data.target_id,
            reporter_id=data.reporter_id,
            category=data.category,
            description=data.description,
            subject=data.subject,
            severity=data.severity,
        )
    except UserNotFoundError:
        raise HTTPException(status_code=404, detail="User not found")
    return flag_result_to_response(result)


@router.patch("/{flag_id}", response_model=FlagRead)
def update_flag(flag_id: UUID, data: FlagStatusUpdate, db: Session = Depends(get_db)):
    """Move a flag through its moderation workflow."""
    try:
        return flag_service.update_flag_status(
            db,
            flag_id,
            data.status,
            resolution_note=data.resolution,
            updated_by=data.updated_by,
        )
    except FlagNotFoundError:
        raise HTTPException(status_code=404, detail="Flag not found")
    except InvalidFlagTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))


# =============================================================================
# Queries
# =============================================================================


@router.get("", response_model=list[FlagRead])
def list_flags(
    flag_status: FlagStatus | None = Query(None, alias="status"),
    target_id: UUID | None = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    return flag_service.list_flags(
        db, status=flag_status, target_id=target_id, limit=limit, offset=offset
    )


@router.get("/stats", response_model=FlagStatsRead)
def get_flag_stats(db: Session = Depends(get_db)):
    """Counts per status plus currently suspended users."""
    return flag_service.get_flag_statistics(db)


@router.post(
    "/users/{user_id}/reset",
    status_code=status.HTTP_204_NO_CONTENT,
)
def reset_violations(
    user_id: UUID,
    data: ViolationResetRequest,
    db: Session = Depends(get_db),
):
    """Administrative reset of a user's violation counter."""
    try:
        flag_service.reset_violation_count(db, user_id, data.reset_by, data.reason)
    except UserNotFoundError:
        raise HTTPException(status_code=404, detail="User not found")
