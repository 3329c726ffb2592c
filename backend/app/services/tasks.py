from collections import Counter
from datetime import datetime
from typing import Any, Dict, Iterable

from backend.app.schemas.task import DONE_STATUS
from backend.app.services.store import as_utc


def is_overdue(task: Dict[str, Any], now: datetime) -> bool:
    deadline = task.get("deadline")
    if not deadline:
        return False
    return now > as_utc(deadline) and task.get("status") != DONE_STATUS


def task_stats(tasks: Iterable[Dict[str, Any]], now: datetime) -> Dict[str, Any]:
    tasks = [t for t in tasks if not t.get("is_archived")]
    return {
        "total": len(tasks),
        "overdue": sum(1 for t in tasks if is_overdue(t, now)),
        "by_status": dict(Counter(t.get("status") for t in tasks)),
    }
