"""Suspension API endpoints."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from callgate.core.deps import get_db
from callgate.db.models import User
from callgate.schemas.suspension import (
    SuspendedUserRead,
    SuspensionCreate,
    SuspensionLift,
    SuspensionRead,
    SuspensionStatusRead,
)
from callgate.services import suspension_service
from callgate.services.suspension_service import SuspensionKindNotAllowedError
from callgate.services.user_service import UserNotFoundError

router = APIRouter(prefix="/suspensions", tags=["suspensions"])


def _status_response(db: Session, user_id: UUID) -> SuspensionStatusRead:
    check = suspension_service.check_status(db, user_id)
    return SuspensionStatusRead(
        user_id=user_id,
        is_suspended=check.is_suspended,
        message=check.message,
        days_remaining=check.days_remaining,
        suspension=SuspensionRead.model_validate(check.suspension) if check.suspension else None,
    )


def _suspended_user(user: User) -> SuspendedUserRead:
    return SuspendedUserRead(
        user_id=user.id,
        email=user.email,
        role=user.role,
        flags_received=user.flags_received,
        suspension=SuspensionRead.model_validate(user.suspension),
    )


@router.get("", response_model=list[SuspendedUserRead])
def list_suspended(db: Session = Depends(get_db)):
    """Users with an active, unexpired suspension."""
    return [_suspended_user(u) for u in suspension_service.list_suspended_users(db)]


@router.get("/{user_id}", response_model=SuspensionStatusRead)
def get_status(user_id: UUID, db: Session = Depends(get_db)):
    """Current suspension status. Expired suspensions are cleared on read."""
    try:
        return _status_response(db, user_id)
    except UserNotFoundError:
        raise HTTPException(status_code=404, detail="User not found")


@router.post("/{user_id}", response_model=SuspensionStatusRead)
def suspend_user(user_id: UUID, data: SuspensionCreate, db: Session = Depends(get_db)):
    """Apply a fixed or manual suspension."""
    try:
        suspension_service.apply_suspension(
            db,
            user_id,
            kind=data.kind,
            reason=data.reason,
            days=data.days,
            triggered_by=data.triggered_by,
        )
        return _status_response(db, user_id)
    except UserNotFoundError:
        raise HTTPException(status_code=404, detail="User not found")
    except SuspensionKindNotAllowedError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.post("/{user_id}/lift", response_model=SuspensionStatusRead)
def lift_suspension(user_id: UUID, data: SuspensionLift, db: Session = Depends(get_db)):
    """Lift a suspension early. The violation counter is not touched."""
    try:
        suspension_service.lift(db, user_id, data.lifted_by, data.reason)
        return _status_response(db, user_id)
    except UserNotFoundError:
        raise HTTPException(status_code=404, detail="User not found")
