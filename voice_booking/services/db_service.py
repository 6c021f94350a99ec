from supabase import create_async_client, AsyncClient
from voice_booking.core.config import settings
from typing import Any, Dict, List, Optional
import logging

logger = logging.getLogger("voice_booking")

class DBService:
    _instance = None
    _client: AsyncClient = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(DBService, cls).__new__(cls)
            # Async client is created lazily on first use
        return cls._instance

    async def get_client(self):
        if not self._client:
            try:
                if settings.SUPABASE_URL and settings.SUPABASE_KEY:
                    self._client = await create_async_client(settings.SUPABASE_URL, settings.SUPABASE_KEY)
                    logger.info("✅ Supabase Async client initialized")
                else:
                    logger.warning("⚠️ Supabase credentials missing")
            except Exception as e:
                logger.error(f"❌ Failed to initialize Supabase Async: {e}")
        return self._client

    # --- Call logs ---

    async def get_call_log(self, call_id: str) -> Optional[Dict[str, Any]]:
        """
        Returns the call_logs row for a Vapi call id, or None if the call is new.
        Read errors are raised: a failed read must not look like a fresh call.
        """
        client = await self.get_client()
        if not client:
            return None

        try:
            response = await client.table('call_logs').select("*").eq('vapi_call_id', call_id).limit(1).execute()
            if response.data:
                return response.data[0]
        except Exception as e:
            logger.error(f"❌ DB Error (get_call_log): {e}")
            raise
        return None

    async def upsert_conversation_state(self, call_id: str, practice_id: Optional[str], state: Dict[str, Any]):
        client = await self.get_client()
        if not client:
            return

        row = {'vapi_call_id': call_id, 'conversation_state': state}
        if practice_id:
            row['practice_id'] = practice_id
        try:
            await client.table('call_logs').upsert(row, on_conflict='vapi_call_id').execute()
        except Exception as e:
            logger.error(f"❌ DB Error (upsert_conversation_state): {e}")
            raise

    async def append_transcript(self, call_id: str, line: str):
        """
        Appends one '[role]: text' line to the stored transcript.
        """
        client = await self.get_client()
        if not client:
            return

        try:
            existing = await self.get_call_log(call_id)
            current = (existing or {}).get('transcript_text') or ""
            text = f"{current}\n{line}" if current else line
            await client.table('call_logs').upsert(
                {'vapi_call_id': call_id, 'transcript_text': text}, on_conflict='vapi_call_id'
            ).execute()
        except Exception as e:
            logger.error(f"❌ DB Error (append_transcript): {e}")

    async def get_transcript(self, call_id: str) -> str:
        try:
            row = await self.get_call_log(call_id)
        except Exception:
            return ""
        return (row or {}).get('transcript_text') or ""

    async def update_call(self, call_id: str, fields: Dict[str, Any]):
        client = await self.get_client()
        if not client:
            return

        try:
            await client.table('call_logs').upsert(
                {'vapi_call_id': call_id, **fields}, on_conflict='vapi_call_id'
            ).execute()
            logger.info(f"📝 Call {call_id} updated: {', '.join(fields)}")
        except Exception as e:
            logger.error(f"❌ DB Error (update_call): {e}")

    # --- Tool logs ---

    async def insert_tool_log(self, row: Dict[str, Any]) -> bool:
        client = await self.get_client()
        if not client:
            return False

        try:
            await client.table('tool_logs').insert(row).execute()
            return True
        except Exception as e:
            logger.error(f"❌ DB Error (insert_tool_log): {e}")
            return False

    async def update_tool_log(self, tool_call_id: str, fields: Dict[str, Any]) -> bool:
        client = await self.get_client()
        if not client:
            return False

        try:
            await client.table('tool_logs').update(fields).eq('tool_call_id', tool_call_id).execute()
            return True
        except Exception as e:
            logger.error(f"❌ DB Error (update_tool_log): {e}")
            return False

    # --- Practice configuration (read only) ---

    async def get_practice_row(self, practice_id: str) -> Optional[Dict[str, Any]]:
        return await self._first('practices', 'id', practice_id)

    async def find_practice_rows(self, column: Optional[str] = None, value: Optional[str] = None) -> List[Dict[str, Any]]:
        client = await self.get_client()
        if not client:
            return []

        try:
            query = client.table('practices').select("*")
            if column:
                query = query.eq(column, value)
            response = await query.execute()
            return response.data or []
        except Exception as e:
            logger.error(f"❌ DB Error (find_practice_rows): {e}")
            return []

    async def get_appointment_type_rows(self, practice_id: str) -> List[Dict[str, Any]]:
        return await self._all('appointment_types', 'practice_id', practice_id)

    async def get_provider_rows(self, practice_id: str) -> List[Dict[str, Any]]:
        return await self._all('providers', 'practice_id', practice_id)

    async def _first(self, table: str, column: str, value: Any) -> Optional[Dict[str, Any]]:
        rows = await self._all(table, column, value)
        return rows[0] if rows else None

    async def _all(self, table: str, column: str, value: Any) -> List[Dict[str, Any]]:
        client = await self.get_client()
        if not client:
            return []

        try:
            response = await client.table(table).select("*").eq(column, value).execute()
            return response.data or []
        except Exception as e:
            logger.error(f"❌ DB Error ({table}): {e}")
            return []

db_service = DBService()
