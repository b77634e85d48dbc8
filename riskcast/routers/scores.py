"""
Score router - live forecast and daily history per user.

Wired to:
- StorageBackend score snapshots
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from riskcast.storage import StorageBackend, get_storage

router = APIRouter()


@router.get("/{user_id}/live")
def get_live_score(user_id: str, storage: StorageBackend = Depends(get_storage)):
    """Today's score, zone, contributors and the 7-day forecast."""
    snapshot = storage.read_live_snapshot(user_id)
    if snapshot is None:
        raise HTTPException(status_code=404, detail=f"No live score for user {user_id}")
    return {"success": True, "data": snapshot.model_dump(mode="json")}


@router.get("/{user_id}/daily")
def get_daily_scores(
    user_id: str,
    start: Optional[date] = None,
    end: Optional[date] = None,
    storage: StorageBackend = Depends(get_storage),
):
    """Persisted daily snapshots, oldest first."""
    if start and end and start > end:
        raise HTTPException(status_code=422, detail="start must not be after end")
    snapshots = storage.read_daily_snapshots(user_id, start=start, end=end)
    return {
        "success": True,
        "data": [s.model_dump(mode="json") for s in snapshots],
        "count": len(snapshots),
    }
