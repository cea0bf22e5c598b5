import asyncio
import logging
from typing import Any, Dict, List, Optional

import aiohttp

from lib.config import get_settings
from lib.error_handler import AppError
from lib.openai_client import OpenAIClient

logger = logging.getLogger(__name__)

MAX_EMOTIONS = 5
MAX_THEMES = 5
MIN_TEXT_LENGTH = 5

POSITIVE_EMOTIONS = {'joy', 'gratitude', 'serenity', 'interest', 'hope', 'pride', 'amusement', 'inspiration'}
NEGATIVE_EMOTIONS = {'anger', 'fear', 'disgust', 'sadness', 'guilt', 'envy', 'anxiety', 'shame'}

NEUTRAL_EMOTIONS = {"Neutral": 0.5}
FALLBACK_EMOTIONS = {"Neutral": 0.5, "Curiosity": 0.3}
FALLBACK_THEMES = ['Personal', 'Experience', 'Reflection']


def sentiment_from_emotions(emotions: Optional[Dict[str, Any]]) -> float:
    """Positive minus negative emotion mass, clamped to [-1, 1]"""
    positive = 0.0
    negative = 0.0
    for name, score in (emotions or {}).items():
        try:
            value = float(score)
        except (TypeError, ValueError):
            continue
        if name.lower() in POSITIVE_EMOTIONS:
            positive += value
        elif name.lower() in NEGATIVE_EMOTIONS:
            negative += value
    return max(-1.0, min(1.0, round(positive - negative, 4)))


class EmotionAnalyzer:
    def __init__(self, openai_client: OpenAIClient, storage_service):
        self.openai = openai_client
        self.storage = storage_service

    @staticmethod
    def _clean(raw: Dict[str, Any]) -> Dict[str, float]:
        emotions = {}
        for name, score in raw.items():
            try:
                value = float(score)
            except (TypeError, ValueError):
                continue
            emotions[str(name)] = round(max(0.1, min(1.0, value)), 2)
        top = sorted(emotions.items(), key=lambda item: item[1], reverse=True)[:MAX_EMOTIONS]
        return dict(top)

    async def analyze(self, text: str) -> Dict[str, float]:
        """Score up to five catalogue emotions; never returns an empty map"""
        if not text or len(text.strip()) < MIN_TEXT_LENGTH:
            logger.warning("Text too short for emotion analysis")
            return dict(NEUTRAL_EMOTIONS)

        try:
            catalogue = await self.storage.get_emotion_catalogue()
        except AppError as e:
            logger.error(f"Error fetching emotion catalogue: {e.message}")
            return {"Joy": 0.3, "Sadness": 0.2}

        emotions_list = '\n'.join(f"- {e['name']}: {e.get('description') or ''}" for e in catalogue)
        try:
            result = await self.openai.chat_json([
                {"role": "system", "content": (
                    "You are an emotion analysis assistant. Analyze the text and select up to 5 of the "
                    f"most prominent emotions from this list:\n{emotions_list}\n"
                    "For each emotion provide an intensity score from 0.1 to 1.0. Always provide at least "
                    "one emotion, using a low score if the text seems neutral. Respond with JSON only, like "
                    '{"Joy": 0.8, "Gratitude": 0.6, "Hope": 0.2}'
                )},
                {"role": "user", "content": text},
            ], temperature=0.3)
        except AppError as e:
            logger.error(f"Emotion analysis failed: {e.message}")
            return dict(FALLBACK_EMOTIONS)

        emotions = self._clean(result)
        if not emotions:
            logger.warning("Model returned no emotions")
            return dict(NEUTRAL_EMOTIONS)

        logger.info(f"Emotions analyzed: {emotions}")
        return emotions


class ThemeExtractor:
    def __init__(self, openai_client: OpenAIClient):
        self.openai = openai_client

    async def extract(self, text: str) -> List[str]:
        if not text or not text.strip():
            return list(FALLBACK_THEMES)

        try:
            result = await self.openai.chat_json([
                {"role": "system", "content": (
                    "You are a theme extraction assistant. Extract the main themes or topics of a journal "
                    "entry (maximum 5) as short phrases. Respond with JSON: "
                    '{"themes": ["work stress", "family time", "personal growth"]}'
                )},
                {"role": "user", "content": text},
            ], temperature=0.3)
        except AppError as e:
            logger.error(f"Theme extraction failed: {e.message}")
            return list(FALLBACK_THEMES)

        themes = result.get('themes') if isinstance(result, dict) else None
        themes = [t.strip() for t in themes or [] if isinstance(t, str) and t.strip()]
        if not themes:
            logger.warning("Model returned no themes")
            return list(FALLBACK_THEMES)

        return themes[:MAX_THEMES]


class GoogleLanguageClient:
    """Minimal async client for the Cloud Natural Language REST API"""

    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None):
        settings = get_settings()
        self.api_key = api_key if api_key is not None else settings.google_api_key
        self.base_url = base_url or settings.google_language_url

    async def call(self, method: str, text: str) -> Dict[str, Any]:
        if not self.api_key:
            raise AppError("Google Natural Language API key is not configured", status_code=500)

        payload = {
            'document': {'type': 'PLAIN_TEXT', 'content': text},
            'encodingType': 'UTF8',
        }
        url = f"{self.base_url}:{method}"
        timeout = aiohttp.ClientTimeout(total=15)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(url, params={'key': self.api_key}, json=payload) as response:
                    if response.status != 200:
                        error_text = await response.text()
                        raise AppError(f"Google NL {method} returned {response.status}: {error_text[:200]}",
                                       status_code=502)
                    return await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise AppError(f"Google NL {method} failed: {e!r}", status_code=502)


class SentimentAnalyzer:
    def __init__(self, language_client: Optional[GoogleLanguageClient] = None):
        self.language = language_client or GoogleLanguageClient()

    async def analyze(self, text: str) -> Optional[float]:
        """Document sentiment score in [-1, 1], or None when unavailable"""
        if not text or not text.strip():
            return None
        try:
            result = await self.language.call('analyzeSentiment', text)
        except AppError as e:
            logger.error(f"Sentiment analysis failed: {e.message}")
            return None
        except asyncio.TimeoutError:
            logger.error("Sentiment analysis timed out")
            return None

        score = (result.get('documentSentiment') or {}).get('score')
        if not isinstance(score, (int, float)):
            return None
        return max(-1.0, min(1.0, float(score)))


class EntityExtractor:
    def __init__(self, language_client: Optional[GoogleLanguageClient] = None):
        self.language = language_client or GoogleLanguageClient()

    async def extract(self, text: str) -> List[Dict[str, str]]:
        if not text or not text.strip():
            return []
        try:
            result = await self.language.call('analyzeEntities', text)
        except AppError as e:
            logger.error(f"Entity extraction failed: {e.message}")
            return []
        except asyncio.TimeoutError:
            logger.error("Entity extraction timed out")
            return []

        entities = []
        seen = set()
        for entity in result.get('entities') or []:
            name = (entity.get('name') or '').strip()
            entity_type = (entity.get('type') or 'other').lower()
            if not name or (name.lower(), entity_type) in seen:
                continue
            seen.add((name.lower(), entity_type))
            entities.append({'name': name, 'type': entity_type})
        return entities
