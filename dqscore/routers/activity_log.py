from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from dqscore.database import get_db
from dqscore.models import ActivityLog
from dqscore.schemas.activity import ActivityLogRead
from dqscore.services.activity_log import list_recent_activity

router = APIRouter(prefix="/activity-logs", tags=["Activity"])


@router.get("", response_model=list[ActivityLogRead])
def list_activity_logs(
    limit: int = Query(20, ge=1, le=200),
    db: Session = Depends(get_db),
) -> list[ActivityLog]:
    return list_recent_activity(db, limit=limit)
