import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List

from api.services.storage import StorageService
from lib.config import get_settings
from lib.error_handler import AppError
from lib.openai_client import OpenAIClient

logger = logging.getLogger(__name__)

TOP_ENTITY_COUNT = 10


def top_entities(entries: List[Dict[str, Any]], limit: int = TOP_ENTITY_COUNT) -> List[Dict[str, Any]]:
    """Most mentioned entities across entries, counted case-insensitively"""
    counts: Dict[str, Dict[str, Any]] = {}
    for entry in entries:
        entities = entry.get('entities')
        if not isinstance(entities, list):
            continue
        for entity in entities:
            if not isinstance(entity, dict) or not entity.get('name'):
                continue
            key = entity['name'].lower()
            if key not in counts:
                counts[key] = {'name': key, 'count': 0, 'type': entity.get('type')}
            counts[key]['count'] += 1

    ranked = sorted(counts.values(), key=lambda item: item['count'], reverse=True)
    return ranked[:limit]


class InsightsService:
    def __init__(self, storage_service: StorageService, openai_client: OpenAIClient):
        self.storage = storage_service
        self.openai = openai_client
        self.settings = get_settings()

    async def journal_summary(self, user_id: str, days: int = 7) -> Dict[str, Any]:
        end = datetime.now(timezone.utc)
        start = end - timedelta(days=days)

        try:
            entries = await self.storage.entries_in_range(user_id, start.isoformat(), end.isoformat())
        except AppError as e:
            logger.error(f"Error fetching entries for summary: {e.message}")
            return {
                'summary': "Unable to fetch journal entries at this time.",
                'top_entities': [],
                'has_entries': False,
                'error': 'Failed to fetch journal entries',
            }

        if not entries:
            logger.info(f"No entries found for user {user_id} in the last {days} days")
            return {
                'summary': "No journal entries found for the specified period.",
                'top_entities': [],
                'has_entries': False,
            }

        journal_texts = '\n\n'.join(
            entry.get('refined text') or entry.get('transcription text') or '' for entry in entries
        )
        prompt = (
            f"Analyze these journal entries from the last {days} days and generate a brief summary "
            f"in less than 30 words: \n\n{journal_texts}"
        )

        try:
            summary = await asyncio.wait_for(
                self.openai.chat([
                    {"role": "system", "content": "You are an empathetic personal journal assistant. "
                                                  "Create very brief, insightful summaries."},
                    {"role": "user", "content": prompt},
                ], max_tokens=100, temperature=0.7),
                timeout=self.settings.summary_timeout
            )
            summary = summary.strip()
        except (AppError, asyncio.TimeoutError) as e:
            logger.error(f"Summary generation failed, using fallback: {e}")
            summary = ''

        if not summary:
            summary = (
                f"Reflecting on {len(entries)} journal entries from the past {days} days. "
                "Your journey continues with valuable insights."
            )

        return {
            'summary': summary,
            'top_entities': top_entities(entries),
            'has_entries': True,
            'entry_count': len(entries),
        }
