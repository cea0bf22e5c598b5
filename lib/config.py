from functools import lru_cache
from typing import Dict, List

from dotenv import load_dotenv
from pydantic_settings import BaseSettings

load_dotenv()


class Settings(BaseSettings):
    # OpenAI settings
    openai_api_key: str = ''
    chat_model: str = 'gpt-4o-mini'
    embedding_model: str = 'text-embedding-3-small'
    transcription_model: str = 'whisper-1'

    # Supabase settings
    supabase_url: str = ''
    supabase_key: str = ''

    # Google Natural Language settings
    google_api_key: str = ''
    google_language_url: str = 'https://language.googleapis.com/v1/documents'

    # Vector search tuning per complexity label
    vector_thresholds: Dict[str, float] = {
        'simple': 0.3,
        'moderate': 0.25,
        'complex': 0.2,
    }
    match_counts: Dict[str, int] = {
        'simple': 8,
        'moderate': 12,
        'complex': 15,
    }
    search_confidence: Dict[str, float] = {
        'simple': 0.9,
        'moderate': 0.7,
        'complex': 0.55,
    }

    # Search pipeline limits
    min_results_before_fallback: int = 3
    recent_fallback_count: int = 8
    max_combined_results: int = 15
    sql_max_retries: int = 2

    # Response generation
    max_prompt_entries: int = 10
    entry_excerpt_chars: int = 300
    conversation_window: int = 2
    response_max_tokens: int = 600

    # Remote audio downloads: https only, Supabase host plus any extra hosts
    audio_download_hosts: List[str] = []
    max_audio_bytes: int = 25 * 1024 * 1024

    # Transcription retry
    transcription_attempts: int = 3
    transcription_base_delay: float = 1.0

    # Journal summary
    summary_timeout: float = 15.0


@lru_cache()
def get_settings() -> Settings:
    return Settings()
