# app/api/routes/journal.py
from fastapi import APIRouter, HTTPException, Query
from datetime import datetime, timedelta, timezone
from typing import Optional

from app.memories import runtime
from app.memories.types import CycleLogEntry, CycleStatus

router = APIRouter()

def _entry_to_dict(e: CycleLogEntry):
    # ts может быть naive; считаем его UTC
    ts = e.ts
    if isinstance(ts, datetime):
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        ts_out = ts.isoformat()
    else:
        ts_out = ts
    return {
        "ts": ts_out,
        "memory_id": e.memory_id,
        "memory_name": e.memory_name,
        "status": e.status.value,
        "branch_order": e.branch_order,
        "branch_name": e.branch_name,
        "value": e.value,
        "committed": e.committed,
        "error": e.error,
    }

@router.get("/journal/if-memories")
def if_memory_events(
    limit: int = Query(200, ge=1, le=2000),
    memory_id: Optional[str] = None,
    status: Optional[str] = None,
    since_s: Optional[int] = None,
):
    repo = runtime.memories_repo()
    if repo is None:
        raise HTTPException(500, "IF-memory engine is not initialized")

    st = None
    if status:
        try:
            st = CycleStatus(status)
        except ValueError:
            raise HTTPException(400, f"status: допустимо {[s.value for s in CycleStatus]}")

    since = None
    if since_s and since_s > 0:
        since = datetime.now(timezone.utc) - timedelta(seconds=since_s)

    rows = repo.list_recent_cycle_logs(limit=limit, memory_id=memory_id, status=st, since=since)
    # отдаём в порядке «старые -> новые», чтобы таблица рисовалась сверху вниз ровно
    rows = rows[::-1]
    return [_entry_to_dict(r) for r in rows]
