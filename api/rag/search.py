import asyncio
import logging
from datetime import datetime
from functools import cmp_to_key
from typing import Any, Awaitable, Dict, List, Optional

from pydantic import BaseModel

from api.rag.classifier import ComplexityAssessment
from api.rag.planner import QueryPlan, VECTOR_ONLY, SQL_ONLY, DUAL_PARALLEL, DUAL_SEQUENTIAL
from api.rag.router import RouteConfig
from api.rag.sql import GeneratedSQLExecutor
from lib.config import get_settings
from lib.database import Database, JOURNAL_TABLE
from lib.error_handler import AppError
from lib.monitoring import SearchDiagnostics

logger = logging.getLogger(__name__)

THEME_MATCH_THRESHOLD = 0.3
THEME_MATCH_COUNT = 5
EMOTION_MIN_SCORE = 0.3
EMOTION_LIMIT = 3
FALLBACK_SIMILARITY = 0.5


class SearchResult(BaseModel):
    vector_results: List[Dict[str, Any]] = []
    sql_results: List[Dict[str, Any]] = []
    combined: List[Dict[str, Any]] = []
    search_method: str


def _timestamp(entry: Dict[str, Any]) -> float:
    value = entry.get('created_at')
    if not value:
        return 0.0
    try:
        return datetime.fromisoformat(str(value).replace('Z', '+00:00')).timestamp()
    except ValueError:
        return 0.0


def _compare(a: Dict[str, Any], b: Dict[str, Any]) -> int:
    a_score = a.get('similarity') or 0
    b_score = b.get('similarity') or 0
    if abs(a_score - b_score) > 0.1:
        return -1 if a_score > b_score else 1
    a_time, b_time = _timestamp(a), _timestamp(b)
    if a_time == b_time:
        return 0
    return -1 if a_time > b_time else 1


def combine_and_deduplicate(
    vector_results: List[Dict[str, Any]],
    sql_results: List[Dict[str, Any]],
    limit: Optional[int] = None
) -> List[Dict[str, Any]]:
    """
    Merge vector and SQL hits. Vector hits win on duplicate ids; rows
    without an id (aggregates) are kept as they are.
    """
    seen = set()
    combined: List[Dict[str, Any]] = []

    for result in vector_results:
        entry_id = result.get('id')
        if entry_id is not None and entry_id in seen:
            continue
        if entry_id is not None:
            seen.add(entry_id)
        combined.append(dict(result, search_method=result.get('search_method') or 'vector'))

    for result in sql_results:
        entry_id = result.get('id')
        if entry_id is not None and entry_id in seen:
            continue
        if entry_id is not None:
            seen.add(entry_id)
        combined.append(result)

    combined.sort(key=cmp_to_key(_compare))
    return combined[:limit] if limit else combined


class SearchExecutor:
    def __init__(self, database: Database, sql_executor: Optional[GeneratedSQLExecutor] = None):
        self.database = database
        self.sql_executor = sql_executor
        self.settings = get_settings()

    def _date_params(self, plan: QueryPlan) -> Dict[str, Optional[str]]:
        return {
            'start_date': plan.time_range.start_date if plan.time_range else None,
            'end_date': plan.time_range.end_date if plan.time_range else None,
        }

    async def vector_search(
        self,
        user_id: str,
        embedding: List[float],
        plan: QueryPlan,
        assessment: ComplexityAssessment,
        config: RouteConfig
    ) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {
            'query_embedding': embedding,
            'match_threshold': assessment.vector_threshold,
            'match_count': assessment.match_count,
            'user_id_filter': user_id,
        }
        try:
            if plan.time_range:
                logger.info("Executing time-filtered vector search")
                params.update(self._date_params(plan))
                rows = await self.database.rpc('match_journal_entries_with_date', params)
            else:
                logger.info("Executing standard vector search")
                rows = await self.database.rpc('match_journal_entries_fixed', params)
        except AppError as e:
            logger.error(f"Vector search error: {e.message}")
            return []

        return [dict(row, search_method='vector') for row in rows or []]

    async def _theme_search(self, user_id: str, theme: str, plan: QueryPlan) -> List[Dict[str, Any]]:
        rows = await self.database.rpc('match_journal_entries_by_theme', {
            'theme_query': theme,
            'user_id_filter': user_id,
            'match_threshold': THEME_MATCH_THRESHOLD,
            'match_count': THEME_MATCH_COUNT,
            **self._date_params(plan),
        })
        return [dict(row, search_method='theme', matched_theme=theme) for row in rows or []]

    async def _entity_search(self, user_id: str, entities: List[str], plan: QueryPlan) -> List[Dict[str, Any]]:
        rows = await self.database.rpc('match_journal_entries_by_entities', {
            'entity_queries': entities,
            'user_id_filter': user_id,
            'match_threshold': THEME_MATCH_THRESHOLD,
            'match_count': THEME_MATCH_COUNT,
            **self._date_params(plan),
        })
        return [dict(row, search_method='entity') for row in rows or []]

    async def _emotion_search(self, user_id: str, emotion: str, plan: QueryPlan) -> List[Dict[str, Any]]:
        rows = await self.database.rpc('match_journal_entries_by_emotion', {
            'emotion_name': emotion,
            'user_id_filter': user_id,
            'min_score': EMOTION_MIN_SCORE,
            'limit_count': EMOTION_LIMIT,
            **self._date_params(plan),
        })
        return [dict(row, search_method='emotion', matched_emotion=emotion) for row in rows or []]

    async def sql_search(
        self,
        user_id: str,
        message: str,
        plan: QueryPlan,
        config: RouteConfig,
        timezone: str = 'UTC'
    ) -> List[Dict[str, Any]]:
        """Theme, entity, emotion and generated-SQL lookups, bounded by the route's concurrency"""
        semaphore = asyncio.Semaphore(config.max_concurrency)

        async def guarded(label: str, call: Awaitable[List[Dict[str, Any]]]) -> List[Dict[str, Any]]:
            async with semaphore:
                try:
                    return await call
                except AppError as e:
                    logger.error(f"SQL search error ({label}): {e.message}")
                    return []

        themes = list(dict.fromkeys(plan.theme_filters + plan.theme_keywords))[:3]
        entities = plan.entity_keywords[:3]
        emotions = list(dict.fromkeys(plan.emotion_filters + plan.emotion_keywords))[:2]

        tasks = [guarded(f"theme {theme}", self._theme_search(user_id, theme, plan)) for theme in themes]
        if entities:
            tasks.append(guarded("entities", self._entity_search(user_id, entities, plan)))
        tasks += [guarded(f"emotion {emotion}", self._emotion_search(user_id, emotion, plan))
                  for emotion in emotions]
        if plan.use_generated_sql and self.sql_executor:
            tasks.append(guarded("generated", self.sql_executor.execute(message, user_id, plan, timezone)))

        if not tasks:
            return []

        batches = await asyncio.gather(*tasks)
        results = [row for batch in batches for row in batch]
        logger.info(f"SQL search completed with {len(results)} results from {len(tasks)} lookups")
        return results

    async def recent_entries(self, user_id: str, plan: QueryPlan, limit: int) -> List[Dict[str, Any]]:
        gte = {'created_at': plan.time_range.start_date} if plan.time_range else None
        lte = {'created_at': plan.time_range.end_date} if plan.time_range else None
        try:
            rows = await self.database.select(
                JOURNAL_TABLE,
                eq={'user_id': user_id},
                gte=gte,
                lte=lte,
                order='created_at',
                limit=limit
            )
        except AppError as e:
            logger.error(f"Recent entries fallback failed: {e.message}")
            return []

        return [{
            'id': row.get('id'),
            'content': row.get('refined text') or row.get('transcription text') or '',
            'created_at': row.get('created_at'),
            'emotions': row.get('emotions'),
            'master_themes': row.get('master_themes'),
            'similarity': FALLBACK_SIMILARITY,
            'search_method': 'fallback_recent',
        } for row in rows]

    async def execute(
        self,
        user_id: str,
        message: str,
        embedding: List[float],
        plan: QueryPlan,
        assessment: ComplexityAssessment,
        config: RouteConfig,
        timezone: str = 'UTC',
        diagnostics: Optional[SearchDiagnostics] = None
    ) -> SearchResult:
        diagnostics = diagnostics or SearchDiagnostics()
        diagnostics.log_query_processing(message, embedding)
        strategy = plan.search_strategy

        vector_results: List[Dict[str, Any]] = []
        sql_results: List[Dict[str, Any]] = []
        method = strategy

        if strategy == VECTOR_ONLY:
            vector_results = await self.vector_search(user_id, embedding, plan, assessment, config)
        elif strategy == SQL_ONLY:
            sql_results = await self.sql_search(user_id, message, plan, config, timezone)
        else:
            try:
                if strategy == DUAL_SEQUENTIAL:
                    vector_results = await self.vector_search(user_id, embedding, plan, assessment, config)
                    sql_results = await self.sql_search(user_id, message, plan, config, timezone)
                else:
                    strategy = DUAL_PARALLEL
                    vector_results, sql_results = await asyncio.gather(
                        self.vector_search(user_id, embedding, plan, assessment, config),
                        self.sql_search(user_id, message, plan, config, timezone)
                    )
                method = strategy
            except Exception as e:
                logger.error(f"Dual search ({strategy}) failed, using vector only: {str(e)}")
                vector_results = await self.vector_search(user_id, embedding, plan, assessment, config)
                sql_results = []
                method = f"{strategy}_fallback"

        if strategy != SQL_ONLY:
            diagnostics.log_vector_results(vector_results)
        if strategy != VECTOR_ONLY:
            diagnostics.log_sql_results(sql_results, method)

        limit = min(config.max_entries, self.settings.max_combined_results)
        combined = combine_and_deduplicate(vector_results, sql_results, limit=limit)
        total = len(vector_results) + len(sql_results)

        if len(combined) < self.settings.min_results_before_fallback:
            logger.info(f"Only {len(combined)} results, adding recent entries")
            recent = await self.recent_entries(user_id, plan, self.settings.recent_fallback_count)
            total += len(recent)
            seen = {entry.get('id') for entry in combined}
            combined += [entry for entry in recent if entry['id'] not in seen]
            combined = combined[:self.settings.max_combined_results]
            if recent:
                method = f"{method}+fallback_recent"

        diagnostics.log_combined(total, len(combined), method)

        return SearchResult(
            vector_results=vector_results,
            sql_results=sql_results,
            combined=combined,
            search_method=method
        )
