import uuid
from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    # Naive UTC; SQLite drops tzinfo on round-trip
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid.uuid4())


def isoformat(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat() + "Z"
