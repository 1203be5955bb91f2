from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from dqscore.models import ActivityLog

logger = logging.getLogger(__name__)

ACTIVITY_RULE_EXECUTED = "rule_executed"
ACTIVITY_QUERY_EXECUTED = "query_executed"


def record_activity(
    session: Session,
    activity_type: str,
    description: str,
    *,
    entity_type: str | None = None,
    entity_id: Any = None,
    payload: dict[str, Any] | None = None,
) -> ActivityLog:
    entry = ActivityLog(
        activity_type=activity_type,
        description=description,
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id is not None else None,
        payload=payload,
    )
    session.add(entry)
    session.flush()
    logger.debug("Recorded %s activity: %s", activity_type, description)
    return entry


def list_recent_activity(session: Session, limit: int = 20) -> list[ActivityLog]:
    statement = (
        select(ActivityLog)
        .order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc())
        .limit(limit)
    )
    return list(session.execute(statement).scalars())
