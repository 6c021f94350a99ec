import pytest
from unittest.mock import AsyncMock, MagicMock

from voice_booking.models.db_models import AuditLogEntry
from voice_booking.services.audit_log import AuditLog


def _db(ok=True):
    db = MagicMock()
    db.insert_tool_log = AsyncMock(return_value=ok)
    db.update_tool_log = AsyncMock(return_value=ok)
    return db


@pytest.mark.asyncio
async def test_start_row_keeps_raw_arguments():
    db = _db()
    entry = AuditLogEntry(tool_call_id="tc-1", call_id="call-1", tool_name="findAppointmentType", arguments="{broken")

    await AuditLog(db=db).record_start(entry)

    row = db.insert_tool_log.call_args.args[0]
    assert row["status"] == "STARTED"
    assert row["vapi_call_id"] == "call-1"
    assert row["arguments"] == {"raw": "{broken"}


@pytest.mark.asyncio
async def test_completion_updates_by_tool_call_id():
    db = _db(ok=False)
    entry = AuditLogEntry(tool_call_id="tc-1", call_id="call-1", tool_name="selectAndBookSlot",
                          arguments={"userSelection": "first"}, result="Booked", success=True, latency_ms=420)

    # A failed write is logged, never raised
    await AuditLog(db=db).record_completion(entry)

    tool_call_id, fields = db.update_tool_log.call_args.args
    assert tool_call_id == "tc-1"
    assert fields["success"] is True
    assert fields["execution_time_ms"] == 420
    assert fields["status"] == "COMPLETED"
