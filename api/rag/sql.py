import logging
import re
from typing import Any, Dict, List, Optional

from api.rag.planner import QueryPlan
from lib.config import get_settings
from lib.database import Database
from lib.error_handler import AppError
from lib.openai_client import OpenAIClient

logger = logging.getLogger(__name__)

UUID_PATTERN = re.compile(
    r'^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$', re.IGNORECASE
)
FORBIDDEN_KEYWORDS = re.compile(
    r'\b(INSERT|UPDATE|DELETE|DROP|ALTER|CREATE|TRUNCATE|GRANT|REVOKE|COPY|CALL|MERGE|VACUUM|EXECUTE)\b',
    re.IGNORECASE
)
JOURNAL_TABLE_REFERENCE = re.compile(r'"?journal entries"?', re.IGNORECASE)
CODE_FENCE = re.compile(r'^```(?:sql)?\s*|\s*```$', re.IGNORECASE)

SCHEMA_CONTEXT = """The database schema includes:
- "Journal Entries" table (always double quoted) with columns: id, user_id, created_at,
  "transcription text", "refined text", emotions (JSONB name -> score 0..1),
  sentiment (float -1..1), master_themes (text[]), entities (JSONB list of {name, type}),
  duration (float seconds)
- emotions column structure: { "joy": 0.8, "sadness": 0.2, ... }"""

GENERATION_PROMPT = """You are an expert PostgreSQL developer writing read-only queries for a personal journal app.
{schema}

Rules:
- Return JSON: {{"sql_query": "...", "reasoning": "..."}}
- One SELECT (or WITH ... SELECT) statement, no semicolon
- Always filter with user_id = auth.uid()
- Use the user's timezone '{timezone}' for date logic
- When returning entries, select id, created_at and COALESCE("refined text", "transcription text") AS content
- For counts or aggregates, give every column a readable alias
{time_hint}"""

REGENERATION_PROMPT = """You are an expert SQL developer specializing in PostgreSQL and Supabase.
Fix SQL queries that encounter errors. Only return the fixed SQL query without any explanations or formatting.
Don't include semicolons at the end and keep the user_id = auth.uid() filter.
{schema}"""


class SQLValidationError(AppError):
    def __init__(self, message: str):
        super().__init__(message, status_code=400, user_message="The generated query was rejected.")


def validate_generated_sql(query: str, user_id: str) -> str:
    """
    Check that an LLM-written query is a single read-only statement scoped to
    one user, and return it with the user id substituted.
    """
    if not user_id or not UUID_PATTERN.match(user_id):
        raise SQLValidationError("Invalid user ID format")

    if not query or not query.strip():
        raise SQLValidationError("Empty SQL query")

    cleaned = CODE_FENCE.sub('', query.strip()).strip().rstrip(';').strip()
    if ';' in cleaned:
        raise SQLValidationError("Only a single SQL statement is allowed")

    upper = cleaned.upper()
    if not (upper.startswith('SELECT') or upper.startswith('WITH')):
        raise SQLValidationError("Only SELECT queries are allowed")

    forbidden = FORBIDDEN_KEYWORDS.search(cleaned)
    if forbidden:
        raise SQLValidationError(f"Forbidden keyword in query: {forbidden.group(1).upper()}")

    if not JOURNAL_TABLE_REFERENCE.search(cleaned):
        raise SQLValidationError("Query must reference the Journal Entries table")

    sanitized = re.sub(r'auth\.uid\(\)', f"'{user_id}'", cleaned)
    sanitized = re.sub(r'\$1\b', f"'{user_id}'", sanitized)
    sanitized = re.sub(r"user_id\s*=\s*([a-f0-9-]{36})\b", f"user_id = '{user_id}'", sanitized,
                       flags=re.IGNORECASE)

    if not re.search(r"user_id\s*=\s*'" + re.escape(user_id) + r"'", sanitized, re.IGNORECASE):
        raise SQLValidationError("Query must filter by the requesting user's id")

    return sanitized


class SQLQueryGenerator:
    def __init__(self, openai_client: OpenAIClient):
        self.openai = openai_client

    async def generate(self, message: str, plan: QueryPlan, timezone: str = 'UTC') -> str:
        time_hint = ''
        if plan.time_range:
            time_hint = (
                f"- Restrict created_at to between '{plan.time_range.start_date}' "
                f"and '{plan.time_range.end_date}'"
            )

        result = await self.openai.chat_json([
            {"role": "system", "content": GENERATION_PROMPT.format(
                schema=SCHEMA_CONTEXT, timezone=timezone, time_hint=time_hint)},
            {"role": "user", "content": f"User question: \"{message}\""},
        ], temperature=0.2)

        query = result.get('sql_query') if isinstance(result, dict) else None
        if not query or not isinstance(query, str):
            raise AppError("Model did not return a SQL query", status_code=502)
        logger.info(f"Generated SQL: {query[:200]}")
        return query

    async def regenerate(self, query: str, error: str, message: str) -> str:
        content = await self.openai.chat([
            {"role": "system", "content": REGENERATION_PROMPT.format(schema=SCHEMA_CONTEXT)},
            {"role": "user", "content": (
                f"The following SQL query failed with this error: \"{error}\"\n\n"
                f"Original query: {query}\n\n"
                f"User was asking: \"{message}\"\n\n"
                "Provide only the corrected SQL query with no explanations or extra text."
            )},
        ], temperature=0.2)

        improved = CODE_FENCE.sub('', content.strip()).strip()
        if not improved:
            raise AppError("Model returned an empty SQL correction", status_code=502)
        return improved


class GeneratedSQLExecutor:
    def __init__(self, database: Database, generator: SQLQueryGenerator, max_retries: Optional[int] = None):
        self.database = database
        self.generator = generator
        self.max_retries = get_settings().sql_max_retries if max_retries is None else max_retries

    async def _run(self, query: str, timezone: str) -> List[Dict[str, Any]]:
        result = await self.database.rpc('execute_dynamic_query', {
            'query_text': query,
            'user_timezone': timezone,
        })
        if not isinstance(result, dict) or not result.get('success'):
            error = result.get('error') if isinstance(result, dict) else 'Invalid response format'
            raise AppError(f"Dynamic query failed: {error}", status_code=502)
        return result.get('data') or []

    async def execute(self, message: str, user_id: str, plan: QueryPlan, timezone: str = 'UTC') -> List[Dict[str, Any]]:
        """
        Generate, validate and run a SQL query for the message. Failed
        attempts are regenerated up to max_retries times; on final failure
        an empty list is returned.
        """
        if not UUID_PATTERN.match(user_id or ''):
            logger.warning("Skipping generated SQL: invalid user ID format")
            return []

        try:
            query = await self.generator.generate(message, plan, timezone)
        except AppError as e:
            logger.error(f"SQL generation failed: {e.message}")
            return []

        for attempt in range(self.max_retries + 1):
            try:
                sanitized = validate_generated_sql(query, user_id)
                rows = await self._run(sanitized, timezone)
                logger.info(f"Generated SQL returned {len(rows)} rows (attempt {attempt + 1})")
                return [dict(row, search_method='sql_generated') for row in rows]
            except AppError as e:
                logger.warning(f"Generated SQL attempt {attempt + 1} failed: {e.message}")
                if attempt >= self.max_retries:
                    break
                try:
                    query = await self.generator.regenerate(query, e.message, message)
                except AppError as regen_error:
                    logger.error(f"SQL regeneration failed: {regen_error.message}")
                    break

        return []
