import logging
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any

from lib.database import Database, JOURNAL_TABLE
from lib.error_handler import AppError

logger = logging.getLogger(__name__)


class StorageService:
    def __init__(self, database: Database):
        self.db = database
        self.threads_table = 'chat_threads'
        self.messages_table = 'chat_messages'
        self.embeddings_table = 'journal_embeddings'
        self.profiles_table = 'profiles'
        self.emotions_table = 'emotions'
        logger.info("Storage service initialized")

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()

    # Chat threads

    async def create_thread(self, user_id: str, title: str) -> Dict[str, Any]:
        now = self._now()
        return await self.db.insert(self.threads_table, {
            'user_id': user_id,
            'title': title[:60] or 'New Conversation',
            'created_at': now,
            'updated_at': now,
        })

    async def ensure_thread(self, user_id: str, thread_id: Optional[str], first_message: str) -> str:
        """Return the given thread id, creating a thread when none was passed"""
        if thread_id:
            return thread_id
        thread = await self.create_thread(user_id, first_message)
        logger.info(f"Created chat thread {thread['id']} for user {user_id}")
        return thread['id']

    async def append_message(
        self,
        thread_id: str,
        sender: str,
        content: str,
        reference_entries: Optional[List[Dict[str, Any]]] = None,
        analysis_data: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        if sender not in ('user', 'assistant'):
            raise AppError(f"Invalid message sender: {sender}", status_code=400)

        row: Dict[str, Any] = {
            'thread_id': thread_id,
            'sender': sender,
            'content': content,
            'created_at': self._now(),
        }
        if reference_entries:
            row['reference_entries'] = reference_entries
        if analysis_data:
            row['analysis_data'] = analysis_data

        message = await self.db.insert(self.messages_table, row)
        await self.db.update(self.threads_table, {'id': thread_id}, {'updated_at': row['created_at']})
        return message

    async def get_thread_history(self, thread_id: str, limit: int = 10) -> List[Dict[str, str]]:
        """Most recent messages of a thread, oldest first, as chat turns"""
        rows = await self.db.select(
            self.messages_table,
            columns='sender, content, created_at',
            eq={'thread_id': thread_id},
            order='created_at',
            limit=limit
        )
        return [
            {'role': row['sender'], 'content': row['content']}
            for row in reversed(rows)
            if row.get('sender') in ('user', 'assistant')
        ]

    # Journal entries

    async def insert_entry(self, row: Dict[str, Any]) -> Dict[str, Any]:
        entry = await self.db.insert(JOURNAL_TABLE, row)
        logger.info(f"Stored journal entry {entry.get('id')} for user {row.get('user_id')}")
        return entry

    async def update_entry(self, entry_id: Any, values: Dict[str, Any]) -> None:
        await self.db.update(JOURNAL_TABLE, {'id': entry_id}, values)

    async def get_entry(self, entry_id: Any) -> Optional[Dict[str, Any]]:
        rows = await self.db.select(JOURNAL_TABLE, eq={'id': entry_id}, limit=1)
        return rows[0] if rows else None

    async def entries_in_range(self, user_id: str, start: str, end: str) -> List[Dict[str, Any]]:
        return await self.db.select(
            JOURNAL_TABLE,
            columns='id, created_at, "refined text", "transcription text", entities, master_themes, emotions, sentiment',
            eq={'user_id': user_id},
            gte={'created_at': start},
            lte={'created_at': end},
            order='created_at'
        )

    async def store_embedding(self, entry_id: Any, content: str, embedding: List[float]) -> None:
        await self.db.upsert(self.embeddings_table, {
            'journal_entry_id': entry_id,
            'content': content,
            'embedding': embedding,
        }, on_conflict='journal_entry_id')

    # Profiles and catalogues

    async def ensure_profile(self, user_id: str) -> None:
        rows = await self.db.select(self.profiles_table, columns='id', eq={'id': user_id}, limit=1)
        if rows:
            return
        logger.info(f"Creating missing profile for user {user_id}")
        await self.db.insert(self.profiles_table, {'id': user_id, 'created_at': self._now()})

    async def get_emotion_catalogue(self) -> List[Dict[str, Any]]:
        return await self.db.select(self.emotions_table, columns='name, description', order='name', descending=False)

    async def get_emotion_names(self) -> List[str]:
        return [row['name'] for row in await self.get_emotion_catalogue() if row.get('name')]

    async def get_known_themes(self, user_id: str, limit: int = 50) -> List[str]:
        """Distinct themes from the user's most recent entries"""
        rows = await self.db.select(
            JOURNAL_TABLE,
            columns='master_themes',
            eq={'user_id': user_id},
            order='created_at',
            limit=limit
        )
        themes: List[str] = []
        for row in rows:
            for theme in row.get('master_themes') or []:
                if theme and theme not in themes:
                    themes.append(theme)
        return themes
