import pytest

from routes.metrics import STALE_SESSIONS
from scheduler.stale_session_monitor import stale_session_monitor_run


@pytest.mark.asyncio
async def test_counts_only_old_processing_sessions(db):
    db.rows("chat_sessions").extend([
        {"chat_id": "comment_c-1", "status": "processing", "updated_at": "2020-01-01T00:00:00+00:00"},
        {"chat_id": "comment_c-2", "status": "processing", "updated_at": "2020-01-02T00:00:00+00:00"},
        {"chat_id": "user-3", "status": "completed", "updated_at": "2020-01-01T00:00:00+00:00"},
    ])

    result = await stale_session_monitor_run()

    assert result["stale_sessions"] == 2
    assert STALE_SESSIONS._value.get() == 2


@pytest.mark.asyncio
async def test_no_stale_sessions_resets_gauge(db):
    STALE_SESSIONS.set(7)
    result = await stale_session_monitor_run()
    assert result["stale_sessions"] == 0
    assert STALE_SESSIONS._value.get() == 0
