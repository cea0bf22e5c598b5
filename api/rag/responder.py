import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from api.rag.formatter import ResponseFormat, build_system_prompt
from api.rag.planner import QueryPlan
from lib.config import get_settings
from lib.openai_client import OpenAIClient

logger = logging.getLogger(__name__)

NO_ENTRIES_MESSAGE = (
    "I don't have any journal entries to analyze yet. Please add some journal entries first, "
    "and then I'll be able to provide personalized insights!"
)
EMPTY_COMPLETION_MESSAGE = "I apologize, but I was unable to generate a response."

GENERAL_PROMPT = (
    "You are SOULo, a supportive voice journaling assistant. The user asked a general question "
    "that does not need their journal entries. Answer it helpfully and concisely in under 150 words. "
    "If it relates to mental health or wellbeing, you may suggest they journal about it so you can "
    "offer more personal insights later."
)


def _entry_date(entry: Dict[str, Any]) -> str:
    value = entry.get('created_at')
    if not value:
        return 'Unknown date'
    try:
        date = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except ValueError:
        return 'Unknown date'
    return f"{date.strftime('%b')} {date.day}"


def _entry_emotion(entry: Dict[str, Any]) -> Optional[str]:
    if entry.get('emotion'):
        return entry['emotion']
    if entry.get('matched_emotion'):
        return entry['matched_emotion']
    emotions = entry.get('emotions')
    if isinstance(emotions, dict) and emotions:
        scored = [(name, score) for name, score in emotions.items() if isinstance(score, (int, float))]
        if scored:
            return max(scored, key=lambda item: item[1])[0]
    return None


def format_entries(entries: List[Dict[str, Any]], max_entries: int, excerpt_chars: int) -> str:
    """Render journal hits as numbered excerpts and aggregate rows as JSON lines"""
    excerpts = []
    aggregates = []

    for entry in entries:
        content = entry.get('content') or entry.get('refined text') or entry.get('transcription text')
        if not content:
            aggregates.append(entry)
            continue
        if len(excerpts) >= max_entries:
            continue

        metadata = f"[{len(excerpts) + 1} - {_entry_date(entry)}"
        emotion = _entry_emotion(entry)
        if emotion:
            metadata += f" - {emotion}"
        metadata += "]"

        text = content[:excerpt_chars]
        if len(content) > excerpt_chars:
            text += '...'
        excerpts.append(f"{metadata}\n{text}\n")

    sections = []
    if excerpts:
        sections.append('\n'.join(excerpts))
    if aggregates:
        rows = [json.dumps({k: v for k, v in row.items() if k != 'search_method'}, default=str)
                for row in aggregates]
        sections.append("Query results:\n" + '\n'.join(rows))
    return '\n\n'.join(sections)


def recent_conversation(conversation: Optional[List[Dict[str, Any]]], window: int) -> List[Dict[str, str]]:
    turns = [
        {"role": turn['role'], "content": turn['content']}
        for turn in conversation or []
        if isinstance(turn, dict)
        and turn.get('role') in ('user', 'assistant')
        and isinstance(turn.get('content'), str)
    ]
    return turns[-window:] if window else []


class ResponseGenerator:
    def __init__(self, openai_client: OpenAIClient):
        self.openai = openai_client
        self.settings = get_settings()

    async def generate(
        self,
        message: str,
        entries: List[Dict[str, Any]],
        plan: QueryPlan,
        fmt: ResponseFormat,
        conversation: Optional[List[Dict[str, Any]]] = None
    ) -> str:
        """Answer the message from the retrieved entries"""
        system_prompt = build_system_prompt(fmt, message, plan)
        formatted = format_entries(entries, self.settings.max_prompt_entries, self.settings.entry_excerpt_chars)

        user_prompt = (
            f"Journal Entries ({len(entries)} total):\n{formatted}\n\n"
            f"User Question: \"{message}\"\n\n"
            "Provide a comprehensive answer based on the available journal data."
        )

        messages = [
            {"role": "system", "content": system_prompt},
            *recent_conversation(conversation, self.settings.conversation_window),
            {"role": "user", "content": user_prompt},
        ]

        response = await self.openai.chat(
            messages,
            max_tokens=self.settings.response_max_tokens,
            temperature=0.7
        )
        logger.info(f"Generated response of {len(response)} chars from {len(entries)} entries")
        return response or EMPTY_COMPLETION_MESSAGE

    async def general_response(self, message: str, conversation: Optional[List[Dict[str, Any]]] = None) -> str:
        messages = [
            {"role": "system", "content": GENERAL_PROMPT},
            *recent_conversation(conversation, self.settings.conversation_window),
            {"role": "user", "content": message},
        ]
        response = await self.openai.chat(messages, max_tokens=300, temperature=0.7)
        return response or EMPTY_COMPLETION_MESSAGE

    @staticmethod
    def no_data_response(message: str, plan: Optional[QueryPlan] = None) -> str:
        response = f"I don't have enough relevant journal entries to answer \"{message}\"."
        if plan is not None and plan.is_personality_query:
            response += (" To analyze personality traits, I need journal entries describing your "
                         "thoughts, feelings, and experiences.")
        elif plan is not None and plan.is_emotion_query:
            response += (" To analyze emotional patterns, I need entries describing your feelings "
                         "and emotional experiences.")
        else:
            response += " Try adding more journal entries about your thoughts and daily experiences."
        return response
