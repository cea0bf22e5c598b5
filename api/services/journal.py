import asyncio
import logging
import uuid
from typing import Any, Dict, Optional

from api.services.analysis import (
    EmotionAnalyzer, EntityExtractor, SentimentAnalyzer, ThemeExtractor, sentiment_from_emotions
)
from api.services.audio import AudioService, decode_audio, estimate_duration
from api.services.storage import StorageService
from lib.error_handler import AppError, ValidationError
from lib.openai_client import OpenAIClient

logger = logging.getLogger(__name__)

REFINE_PROMPT = (
    "You clean up voice journal transcriptions. Fix punctuation, grammar and obvious "
    "transcription mistakes while keeping the speaker's words, meaning and first-person voice. "
    "Return only the cleaned text."
)


class JournalService:
    def __init__(
        self,
        storage_service: StorageService,
        audio_service: AudioService,
        openai_client: OpenAIClient,
        emotion_analyzer: EmotionAnalyzer,
        theme_extractor: ThemeExtractor,
        sentiment_analyzer: SentimentAnalyzer,
        entity_extractor: EntityExtractor
    ):
        self.storage = storage_service
        self.audio = audio_service
        self.openai = openai_client
        self.emotions = emotion_analyzer
        self.themes = theme_extractor
        self.sentiment = sentiment_analyzer
        self.entities = entity_extractor

    async def create_entry_from_audio(
        self,
        user_id: str,
        audio_b64: Optional[str] = None,
        direct_transcription: bool = False,
        audio_url: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Transcribe a base64 recording (or one fetched from audio_url). In
        direct mode only the text is returned; otherwise a journal entry is
        stored and post-processed.
        """
        if not user_id:
            raise ValidationError("User ID is required")

        if audio_b64 is None and audio_url:
            audio = await self.audio.download_audio(audio_url)
        else:
            audio = decode_audio(audio_b64)
        logger.info(f"Transcribing audio for user {user_id}. Direct transcription mode: {direct_transcription}")

        transcription = await self.audio.transcribe(audio, language=None if direct_transcription else 'en')
        if direct_transcription:
            return {'transcription': transcription}

        await self.storage.ensure_profile(user_id)

        foreign_key = f"journal-entry-{uuid.uuid4()}"
        entry = await self.storage.insert_entry({
            'user_id': user_id,
            'transcription text': transcription,
            'sentiment': None,
            'duration': estimate_duration(audio),
            'foreign key': foreign_key,
        })
        entry_id = entry.get('id')
        if entry_id is None:
            raise AppError("Journal entry was not created properly", status_code=502)

        processing: Optional[Dict[str, Any]] = None
        try:
            processing = await self.process_entry(entry_id)
        except AppError as e:
            logger.error(f"Post-processing failed for entry {entry_id}: {e.message}")

        return {
            'transcription': transcription,
            'entry_id': entry_id,
            'foreign_key': foreign_key,
            'processing': processing,
        }

    async def refine_text(self, text: str) -> str:
        try:
            refined = await self.openai.chat([
                {"role": "system", "content": REFINE_PROMPT},
                {"role": "user", "content": text},
            ], temperature=0.3)
        except AppError as e:
            logger.error(f"Text refinement failed: {e.message}")
            return text
        return refined.strip() or text

    async def _store_embedding(self, entry_id: Any, content: str) -> bool:
        try:
            embedding = await self.openai.embed(content)
            await self.storage.store_embedding(entry_id, content, embedding)
            return True
        except AppError as e:
            logger.error(f"Error storing embedding for entry {entry_id}: {e.message}")
            return False

    async def process_entry(self, entry_id: Any) -> Dict[str, Any]:
        """Refine, embed and analyze an existing entry, then write the results back"""
        entry = await self.storage.get_entry(entry_id)
        if not entry:
            raise AppError(f"Entry {entry_id} not found", status_code=404, user_message="Entry not found")

        content = entry.get('refined text') or ''
        refined = bool(content)
        if not content:
            transcription = entry.get('transcription text') or ''
            if not transcription.strip():
                raise ValidationError("Entry has no text content to process")
            content = await self.refine_text(transcription)

        embedding_stored, emotions, themes, entities, sentiment = await asyncio.gather(
            self._store_embedding(entry_id, content),
            self.emotions.analyze(content),
            self.themes.extract(content),
            self.entities.extract(content),
            self.sentiment.analyze(content)
        )

        if sentiment is None:
            sentiment = sentiment_from_emotions(emotions)
            logger.info(f"Using emotion-derived sentiment {sentiment} for entry {entry_id}")

        values: Dict[str, Any] = {
            'emotions': emotions,
            'master_themes': themes,
            'sentiment': sentiment,
        }
        if entities:
            values['entities'] = entities
        if not refined:
            values['refined text'] = content

        await self.storage.update_entry(entry_id, values)
        logger.info(f"Processed journal entry {entry_id}")

        return {
            'entry_id': entry_id,
            'embedding_stored': embedding_stored,
            'emotions': emotions,
            'themes': themes,
            'entities': entities,
            'sentiment': sentiment,
        }
