import asyncio
import base64
import binascii
import logging
from typing import Optional, Set, Tuple
from urllib.parse import urlparse

import aiohttp

from lib.config import get_settings
from lib.error_handler import AppError, ValidationError
from lib.openai_client import OpenAIClient

logger = logging.getLogger(__name__)

BYTES_PER_SECOND = 16000
DOWNLOAD_CHUNK_SIZE = 64 * 1024


def detect_audio_format(audio: bytes) -> Tuple[str, str]:
    """Return (extension, mime type) from the file header, defaulting to webm"""
    if len(audio) > 12 and audio[0:4] == b'RIFF' and audio[8:12] == b'WAVE':
        return 'wav', 'audio/wav'
    if len(audio) > 2 and (audio[0:3] == b'ID3' or (audio[0] == 0xFF and (audio[1] & 0xE0) == 0xE0)):
        return 'mp3', 'audio/mp3'
    if len(audio) > 11 and audio[4:8] == b'ftyp':
        return 'm4a', 'audio/m4a'
    return 'webm', 'audio/webm'


def estimate_duration(audio: bytes) -> int:
    """Rough duration in seconds for compressed audio (~16KB per second)"""
    return round(len(audio) / BYTES_PER_SECOND)


def decode_audio(audio_b64: str) -> bytes:
    if not audio_b64 or not isinstance(audio_b64, str):
        raise ValidationError("No audio data provided")

    # Strip a data URL prefix if the client sent one
    if audio_b64.startswith('data:') and ',' in audio_b64:
        audio_b64 = audio_b64.split(',', 1)[1]

    try:
        audio = base64.b64decode(audio_b64, validate=True)
    except (binascii.Error, ValueError):
        raise ValidationError("Invalid base64 audio data")

    if not audio:
        raise ValidationError("No audio data provided")
    return audio


class AudioService:
    def __init__(self, openai_client: OpenAIClient):
        self.client = openai_client
        self.settings = get_settings()
        logger.info("Audio service initialized")

    async def transcribe(self, audio: bytes, language: Optional[str] = 'en') -> str:
        """
        Transcribe audio with Whisper, retrying with exponential backoff
        """
        extension, mime_type = detect_audio_format(audio)
        logger.info(f"Transcribing {len(audio)} bytes, detected {extension} ({mime_type})")

        attempts = self.settings.transcription_attempts
        delay = self.settings.transcription_base_delay
        last_error: Optional[AppError] = None

        for attempt in range(1, attempts + 1):
            try:
                text = await self.client.transcribe(audio, f"audio.{extension}", language=language)
                logger.info(f"Transcription complete: {text[:50]}...")
                return text
            except AppError as e:
                last_error = e
                logger.warning(f"Transcription attempt {attempt}/{attempts} failed: {e.message}")
                if attempt < attempts:
                    await asyncio.sleep(delay)
                    delay *= 2

        raise AppError(
            f"Transcription failed after {attempts} attempts: {last_error.message if last_error else ''}",
            status_code=502,
            user_message="Sorry, I couldn't transcribe your audio. Please try recording it again."
        )

    def _allowed_hosts(self) -> Set[str]:
        hosts = {h.lower() for h in self.settings.audio_download_hosts if h}
        supabase_host = urlparse(self.settings.supabase_url).hostname
        if supabase_host:
            hosts.add(supabase_host.lower())
        return hosts

    def _check_download_url(self, url: str) -> None:
        if not isinstance(url, str):
            raise ValidationError("Invalid audio URL")
        parsed = urlparse(url)
        host = (parsed.hostname or '').lower()
        if parsed.scheme != 'https' or not host or host not in self._allowed_hosts():
            logger.warning(f"Rejected audio download from host {host or '?'}")
            raise ValidationError("Audio URL is not an allowed storage location")

    def _too_large(self, size: int) -> AppError:
        return AppError(
            f"Audio download exceeds {self.settings.max_audio_bytes} bytes ({size})",
            status_code=413,
            user_message="Audio file is too large."
        )

    async def download_audio(self, url: str) -> bytes:
        """Fetch a recording from an allowed storage host (https only, size capped)"""
        self._check_download_url(url)
        limit = self.settings.max_audio_bytes

        logger.info("Downloading audio file...")
        timeout = aiohttp.ClientTimeout(total=30)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(url, allow_redirects=False) as response:
                    if response.status != 200:
                        logger.error(f"Failed to download audio: {response.status}")
                        raise AppError(f"Audio download returned {response.status}", status_code=502)
                    if response.content_length is not None and response.content_length > limit:
                        raise self._too_large(response.content_length)

                    audio_data = bytearray()
                    async for chunk in response.content.iter_chunked(DOWNLOAD_CHUNK_SIZE):
                        audio_data.extend(chunk)
                        if len(audio_data) > limit:
                            raise self._too_large(len(audio_data))
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise AppError(f"Audio download failed: {e!r}", status_code=502)

        logger.info(f"Audio file downloaded: {len(audio_data)} bytes")
        return bytes(audio_data)
