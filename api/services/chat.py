import asyncio
import logging
from typing import Any, Dict, List, Optional

from api.rag.classifier import (
    analyze_query_types, assess_complexity, classify_message, detect_mental_health_query
)
from api.rag.dates import detect_time_range, normalize_time_range
from api.rag.formatter import determine_response_format
from api.rag.planner import plan_query, should_use_analytical_formatting
from api.rag.responder import NO_ENTRIES_MESSAGE, ResponseGenerator
from api.rag.router import QueryContext, RouteConfig, SmartQueryRouter
from api.rag.search import SearchExecutor
from api.services.storage import StorageService
from lib.database import Database
from lib.error_handler import AppError, ValidationError
from lib.monitoring import SearchDiagnostics
from lib.openai_client import OpenAIClient

logger = logging.getLogger(__name__)

REFERENCE_LIMIT = 10
REFERENCE_EXCERPT_CHARS = 200


def _references(entries: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [{
        'id': entry['id'],
        'content': (entry.get('content') or '')[:REFERENCE_EXCERPT_CHARS],
        'created_at': entry.get('created_at'),
        'similarity': entry.get('similarity'),
        'search_method': entry.get('search_method'),
    } for entry in entries if entry.get('id') is not None][:REFERENCE_LIMIT]


class ChatService:
    def __init__(
        self,
        database: Database,
        openai_client: OpenAIClient,
        storage_service: StorageService,
        search_executor: SearchExecutor,
        responder: ResponseGenerator,
        router: Optional[SmartQueryRouter] = None
    ):
        self.db = database
        self.openai = openai_client
        self.storage = storage_service
        self.search = search_executor
        self.responder = responder
        self.router = router or SmartQueryRouter()

    @staticmethod
    def _validate(user_id: str, message: str) -> None:
        if not user_id or not isinstance(user_id, str):
            raise ValidationError("User ID is required")
        if not isinstance(message, str) or not message.strip():
            raise ValidationError("Message is required")

    async def _conversation(self, thread_id: Optional[str],
                            conversation_context: Optional[List[Dict[str, Any]]]) -> List[Dict[str, Any]]:
        if conversation_context:
            return conversation_context
        if not thread_id:
            return []
        try:
            return await self.storage.get_thread_history(thread_id)
        except AppError as e:
            logger.error(f"Could not load thread history: {e.message}")
            return []

    async def _filter_context(self, user_id: str):
        themes, emotions = await asyncio.gather(
            self.storage.get_known_themes(user_id),
            self.storage.get_emotion_names(),
            return_exceptions=True
        )
        if isinstance(themes, Exception):
            logger.error(f"Could not load known themes: {themes}")
            themes = []
        if isinstance(emotions, Exception):
            logger.error(f"Could not load emotion catalogue: {emotions}")
            emotions = []
        return themes, emotions

    async def _persist(self, user_id: str, thread_id: Optional[str], message: str, reply: str,
                       references: List[Dict[str, Any]], analysis: Dict[str, Any]) -> Optional[str]:
        try:
            thread_id = await self.storage.ensure_thread(user_id, thread_id, message)
            await self.storage.append_message(thread_id, 'user', message)
            await self.storage.append_message(thread_id, 'assistant', reply,
                                              reference_entries=references, analysis_data=analysis)
            return thread_id
        except AppError as e:
            logger.error(f"Failed to store chat messages: {e.message}")
            return thread_id

    async def _prepare(self, user_id: str, message: str, time_range: Optional[Dict[str, Any]],
                       user_timezone: str, entry_count: int):
        assessment = assess_complexity(message)
        normalized = normalize_time_range(time_range, user_timezone) or detect_time_range(message, user_timezone)
        themes, emotions = await self._filter_context(user_id)
        plan = plan_query(message, normalized, themes, emotions, complexity=assessment)

        if plan.is_emotion_query:
            expected = 'emotional'
        elif plan.expected_response_type in ('analysis', 'aggregated'):
            expected = 'analytical'
        else:
            expected = 'factual'

        context = QueryContext(
            message=message,
            user_id=user_id,
            complexity=assessment.label,
            has_time_context=plan.requires_time_filter,
            has_personal_pronouns=assessment.flags.get('has_personal_pronouns', False),
            entry_count=entry_count,
            expected_result_type=expected
        )
        return assessment, plan, context

    async def process_message(
        self,
        user_id: str,
        message: str,
        thread_id: Optional[str] = None,
        conversation_context: Optional[List[Dict[str, Any]]] = None,
        time_range: Optional[Dict[str, Any]] = None,
        user_timezone: str = 'UTC'
    ) -> Dict[str, Any]:
        """Answer a chat message, from the journal when it is a personal question"""
        self._validate(user_id, message)
        message = message.strip()
        conversation = await self._conversation(thread_id, conversation_context)

        classification = classify_message(message)
        if not classification.should_use_journal:
            reply = await self.responder.general_response(message, conversation)
            analysis = {'type': 'general', 'classification': classification.model_dump()}
            thread_id = await self._persist(user_id, thread_id, message, reply, [], analysis)
            return {'data': reply, 'references': [], 'analysis': analysis, 'thread_id': thread_id}

        entry_count = await self.db.count_entries(user_id)
        if entry_count == 0:
            logger.info(f"User {user_id} has no journal entries")
            return {'data': NO_ENTRIES_MESSAGE, 'references': [], 'analysis': {'type': 'no_entries'},
                    'thread_id': thread_id}

        assessment, plan, context = await self._prepare(user_id, message, time_range, user_timezone, entry_count)
        decision = self.router.route_query(context)
        diagnostics = SearchDiagnostics()
        embedding: List[float] = []

        async def run_search(config: RouteConfig):
            nonlocal embedding
            if not embedding:
                embedding = await self.openai.embed(message)
            return await self.search.execute(
                user_id, message, embedding, plan, assessment, config,
                timezone=user_timezone, diagnostics=diagnostics
            )

        routed = await self.router.execute_with_adaptive_routing(context, run_search, decision)
        entries = routed.result.combined
        logger.info(f"Retrieved {len(entries)} relevant entries via {routed.result.search_method}")

        fmt = determine_response_format(message, plan)
        if not entries:
            reply = self.responder.no_data_response(message, plan)
        else:
            reply = await self.responder.generate(message, entries, plan, fmt, conversation)

        references = _references(entries)
        analysis = {
            'type': 'journal_specific',
            'classification': classification.model_dump(),
            'complexity': assessment.label,
            'plan': plan.model_dump(mode='json'),
            'search_method': routed.result.search_method,
            'format': fmt.format_type,
            'analytical_formatting': should_use_analytical_formatting(plan, message),
            'entry_count': entry_count,
        }
        route = {
            'primary': decision.primary,
            'fallback': decision.fallback,
            'used': routed.route_used,
            'performance_ms': routed.performance_ms,
            'adaptations': routed.adaptations_applied,
            'optimizations': decision.optimizations,
        }

        thread_id = await self._persist(user_id, thread_id, message, reply, references, analysis)
        return {
            'data': reply,
            'references': references,
            'analysis': analysis,
            'route': route,
            'diagnostics': diagnostics.summary(),
            'thread_id': thread_id,
        }

    async def plan_only(
        self,
        user_id: str,
        message: str,
        time_range: Optional[Dict[str, Any]] = None,
        user_timezone: str = 'UTC'
    ) -> Dict[str, Any]:
        """Classification, plan and routing for a message, without searching"""
        self._validate(user_id, message)
        message = message.strip()

        classification = classify_message(message)
        entry_count = await self.db.count_entries(user_id)
        assessment, plan, context = await self._prepare(user_id, message, time_range, user_timezone, entry_count)
        decision = self.router.route_query(context)

        return {
            'classification': classification.model_dump(),
            'complexity': assessment.model_dump(),
            'plan': plan.model_dump(mode='json'),
            'routing': decision.model_dump(),
            'route_config': self.router.get_route_configuration(decision.primary).model_dump(),
            'query_types': analyze_query_types(message).model_dump(),
            'is_mental_health_query': detect_mental_health_query(message),
            'entry_count': entry_count,
        }
