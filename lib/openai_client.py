import json
import logging
from io import BytesIO
from typing import Any, Dict, List, Optional

from openai import AsyncOpenAI

from lib.config import get_settings
from lib.error_handler import AppError

logger = logging.getLogger(__name__)


class OpenAIClient:
    def __init__(self, client: Optional[AsyncOpenAI] = None):
        self.settings = get_settings()
        self.client = client or AsyncOpenAI(api_key=self.settings.openai_api_key)

    async def chat(
        self,
        messages: List[Dict[str, str]],
        max_tokens: Optional[int] = None,
        temperature: float = 0.7,
        model: Optional[str] = None
    ) -> str:
        """
        Generate a chat completion and return its text
        """
        try:
            kwargs: Dict[str, Any] = {
                "model": model or self.settings.chat_model,
                "messages": messages,
                "temperature": temperature,
            }
            if max_tokens:
                kwargs["max_tokens"] = max_tokens

            response = await self.client.chat.completions.create(**kwargs)
            return response.choices[0].message.content or ""

        except Exception as e:
            raise AppError(f"Response generation failed: {str(e)}", status_code=502)

    async def chat_json(
        self,
        messages: List[Dict[str, str]],
        temperature: float = 0.3,
        model: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Generate a chat completion in JSON mode and parse it
        """
        try:
            response = await self.client.chat.completions.create(
                model=model or self.settings.chat_model,
                messages=messages,
                temperature=temperature,
                response_format={"type": "json_object"}
            )
            content = response.choices[0].message.content or "{}"
        except Exception as e:
            raise AppError(f"JSON completion failed: {str(e)}", status_code=502)

        try:
            return json.loads(content)
        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse JSON completion: {content[:200]}")
            raise AppError(f"Invalid JSON from model: {str(e)}", status_code=502)

    async def embed(self, text: str) -> List[float]:
        """
        Generate an embedding vector for text
        """
        try:
            response = await self.client.embeddings.create(
                model=self.settings.embedding_model,
                input=text
            )
            if not response.data:
                raise AppError("No embedding data returned from OpenAI", status_code=502)
            return response.data[0].embedding

        except AppError:
            raise
        except Exception as e:
            raise AppError(f"Embedding generation failed: {str(e)}", status_code=502)

    async def transcribe(self, audio: bytes, filename: str, language: Optional[str] = None) -> str:
        """
        Transcribe audio bytes using OpenAI Whisper API
        """
        audio_file = BytesIO(audio)
        audio_file.name = filename
        kwargs: Dict[str, Any] = {
            "model": self.settings.transcription_model,
            "file": audio_file,
            "response_format": "text",
        }
        if language:
            kwargs["language"] = language

        try:
            transcript = await self.client.audio.transcriptions.create(**kwargs)
        except Exception as e:
            raise AppError(f"Transcription failed: {str(e)}", status_code=502)

        if not isinstance(transcript, str):
            transcript = getattr(transcript, 'text', '') or ''
        return transcript.strip()
