"""User settings API — market defaults and fee rates."""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from sqlmodel import Session, select

from finrecorder.database import get_session
from finrecorder.models.preference import UserPreference
from finrecorder.models.user import User
from finrecorder.schemas.preference import PreferenceRead, PreferenceUpdate
from finrecorder.api.deps import get_current_user

router = APIRouter(prefix="/api/settings", tags=["settings"])


def _get_or_create(session: Session, user_id: int) -> UserPreference:
    pref = session.exec(select(UserPreference).where(UserPreference.user_id == user_id)).first()
    if pref is None:
        pref = UserPreference(user_id=user_id)
        session.add(pref)
        session.commit()
        session.refresh(pref)
    return pref


@router.get("", response_model=PreferenceRead)
def get_settings(user: User = Depends(get_current_user), session: Session = Depends(get_session)):
    return _get_or_create(session, user.id)


@router.put("", response_model=PreferenceRead)
def update_settings(
    data: PreferenceUpdate,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    pref = _get_or_create(session, user.id)
    for key, value in data.model_dump(exclude_unset=True, exclude_none=True).items():
        setattr(pref, key, value)
    pref.updated_at = datetime.now(timezone.utc)
    session.add(pref)
    session.commit()
    session.refresh(pref)
    return pref
