import json

from voice_booking.core.logger import logger
from voice_booking.models.db_models import AuditLogEntry
from voice_booking.services.db_service import db_service


def _jsonable(arguments):
    if arguments is None or isinstance(arguments, (dict, list)):
        return arguments
    # Unparseable argument strings are stored as-is
    return {"raw": str(arguments)}


class AuditLog:
    """
    Append-only record of tool invocations (tool_logs table).
    The start row and the completion update are separate writes; neither raises.
    """

    def __init__(self, db=None):
        self.db = db or db_service

    async def record_start(self, entry: AuditLogEntry):
        ok = await self.db.insert_tool_log({
            'tool_call_id': entry.tool_call_id,
            'vapi_call_id': entry.call_id,
            'practice_id': entry.practice_id,
            'tool_name': entry.tool_name,
            'arguments': _jsonable(entry.arguments),
            'status': 'STARTED',
        })
        if not ok:
            logger.warning(f"⚠️ Tool log start not written for {entry.tool_name} ({entry.tool_call_id})")

    async def record_completion(self, entry: AuditLogEntry):
        ok = await self.db.update_tool_log(entry.tool_call_id, {
            'practice_id': entry.practice_id,
            'result': entry.result,
            'error': entry.error,
            'success': entry.success,
            'execution_time_ms': entry.latency_ms,
            'status': 'COMPLETED',
        })
        level = "INFO" if entry.success else "WARNING"
        logger.log(
            level,
            f"🧾 {entry.tool_name} finished in {entry.latency_ms} ms "
            f"(success={entry.success}, logged={ok}) args={json.dumps(_jsonable(entry.arguments), default=str)}"
        )


audit_log = AuditLog()
