from __future__ import annotations
from datetime import datetime, timedelta
from sqlalchemy import delete
from sqlalchemy.orm import Session

from .models import AuthSession, SpeakingModule


def purge_older_than_one_week(db: Session, *, now: datetime | None = None) -> int:
	"""Drop archived speaking sessions and idle login sessions older than seven days."""
	threshold = (now or datetime.utcnow()) - timedelta(days=7)
	removed = 0

	res = db.execute(delete(SpeakingModule).where(SpeakingModule.updated_at < threshold))
	removed += res.rowcount or 0

	# Idle logins are revoked; their tokens stop validating
	res = db.execute(delete(AuthSession).where(AuthSession.last_activity_at < threshold))
	removed += res.rowcount or 0

	db.commit()
	return removed
