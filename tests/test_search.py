import asyncio
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytz

from api.rag.classifier import assess_complexity
from api.rag.dates import detect_time_range
from api.rag.planner import QueryPlan, plan_query
from api.rag.router import ROUTE_CONFIGURATIONS
from api.rag.search import SearchExecutor, combine_and_deduplicate
from lib.error_handler import AppError
from lib.monitoring import SearchDiagnostics

USER_ID = '123e4567-e89b-12d3-a456-426614174000'
STANDARD = ROUTE_CONFIGURATIONS['standard']


def _entry(entry_id, similarity, created_at, content='entry text'):
    return {'id': entry_id, 'content': content, 'similarity': similarity, 'created_at': created_at}


def test_combine_prefers_vector_hits_and_keeps_aggregates():
    vector = [_entry(1, 0.9, '2024-01-01T00:00:00Z')]
    sql = [
        dict(_entry(1, 0.4, '2024-01-01T00:00:00Z'), search_method='theme'),
        dict(_entry(2, 0.2, '2024-02-01T00:00:00Z'), search_method='emotion'),
        {'total_entries': 12, 'search_method': 'sql_generated'},
    ]

    combined = combine_and_deduplicate(vector, sql)
    assert [row.get('id') for row in combined] == [1, 2, None]
    assert combined[0]['search_method'] == 'vector'
    assert combined[0]['similarity'] == 0.9
    assert combined[2]['total_entries'] == 12


def test_combine_orders_close_scores_by_recency():
    older = _entry(1, 0.8, '2024-01-01T00:00:00Z')
    newer = _entry(2, 0.75, '2024-02-01T00:00:00Z')
    assert [row['id'] for row in combine_and_deduplicate([older, newer], [])] == [2, 1]


def test_combine_limit():
    vector = [_entry(i, 0.9 - i * 0.2, '2024-01-01') for i in range(5)]
    assert len(combine_and_deduplicate(vector, [], limit=2)) == 2


def _vector_plan(message="beach trip memories", time_range=None):
    return plan_query(message, time_range=time_range, complexity=assess_complexity(message))


@pytest.mark.asyncio
async def test_vector_only_search(mock_database):
    mock_database.rpc = AsyncMock(return_value=[
        _entry(1, 0.9, '2024-01-03'), _entry(2, 0.8, '2024-01-02'), _entry(3, 0.7, '2024-01-01'),
    ])
    message = "beach trip memories"
    executor = SearchExecutor(mock_database)

    result = await executor.execute(USER_ID, message, [0.1], _vector_plan(), assess_complexity(message), STANDARD)

    assert result.search_method == 'vector_only'
    assert [row['id'] for row in result.combined] == [1, 2, 3]
    name, params = mock_database.rpc.call_args[0]
    assert name == 'match_journal_entries_fixed'
    assert params['match_threshold'] == 0.3
    assert params['user_id_filter'] == USER_ID
    mock_database.select.assert_not_called()


@pytest.mark.asyncio
async def test_time_range_uses_dated_vector_search(mock_database):
    now = pytz.utc.localize(datetime(2024, 3, 15))
    time_range = detect_time_range("in january", now=now)
    plan = _vector_plan(time_range=time_range)
    executor = SearchExecutor(mock_database)

    await executor.vector_search(USER_ID, [0.1], plan, assess_complexity("beach"), STANDARD)

    name, params = mock_database.rpc.call_args[0]
    assert name == 'match_journal_entries_with_date'
    assert params['start_date'] == time_range.start_date
    assert params['end_date'] == time_range.end_date


@pytest.mark.asyncio
async def test_few_results_add_recent_entries(mock_database):
    mock_database.rpc = AsyncMock(return_value=[_entry(1, 0.9, '2024-01-03')])
    mock_database.select = AsyncMock(return_value=[
        {'id': 1, 'refined text': 'duplicate', 'created_at': '2024-01-03'},
        {'id': 7, 'refined text': None, 'transcription text': 'raw text', 'created_at': '2024-01-02'},
    ])
    message = "beach trip memories"
    diagnostics = SearchDiagnostics()
    executor = SearchExecutor(mock_database)

    result = await executor.execute(USER_ID, message, [0.1], _vector_plan(), assess_complexity(message),
                                    STANDARD, diagnostics=diagnostics)

    assert result.search_method == 'vector_only+fallback_recent'
    assert [row['id'] for row in result.combined] == [1, 7]
    assert result.combined[1]['content'] == 'raw text'
    assert result.combined[1]['similarity'] == 0.5
    assert result.combined[1]['search_method'] == 'fallback_recent'


@pytest.mark.asyncio
async def test_dual_parallel_runs_all_lookups(mock_database):
    async def rpc(name, params):
        if name == 'match_journal_entries_fixed':
            return [_entry(1, 0.9, '2024-01-03')]
        if name == 'match_journal_entries_by_theme':
            return [_entry(2, 0.6, '2024-01-02')]
        if name == 'match_journal_entries_by_emotion':
            raise AppError("rpc failed", status_code=502)
        return []

    mock_database.rpc = AsyncMock(side_effect=rpc)
    sql_executor = MagicMock()
    sql_executor.execute = AsyncMock(return_value=[{'occurrences': 4, 'search_method': 'sql_generated'}])

    message = "how often do I feel stressed at work"
    plan = plan_query(message, known_themes=['work'])
    executor = SearchExecutor(mock_database, sql_executor)

    result = await executor.execute(USER_ID, message, [0.1], plan, assess_complexity(message), STANDARD)

    assert plan.search_strategy == 'dual_parallel'
    assert result.search_method == 'dual_parallel'
    assert [row.get('id') for row in result.combined] == [1, 2, None]
    called = [call[0][0] for call in mock_database.rpc.call_args_list]
    assert 'match_journal_entries_by_theme' in called
    assert 'match_journal_entries_by_emotion' in called
    sql_executor.execute.assert_awaited_once()


@pytest.mark.asyncio
async def test_dual_search_failure_falls_back_to_vector(mock_database):
    mock_database.rpc = AsyncMock(return_value=[
        _entry(1, 0.9, '2024-01-03'), _entry(2, 0.8, '2024-01-02'), _entry(3, 0.7, '2024-01-01'),
    ])
    sql_executor = MagicMock()
    sql_executor.execute = AsyncMock(side_effect=RuntimeError("boom"))

    message = "how often do I feel stressed at work"
    plan = plan_query(message, known_themes=['work'])
    executor = SearchExecutor(mock_database, sql_executor)

    result = await executor.execute(USER_ID, message, [0.1], plan, assess_complexity(message), STANDARD)

    assert result.search_method == 'dual_parallel_fallback'
    assert result.sql_results == []
    assert len(result.combined) == 3


@pytest.mark.asyncio
async def test_results_capped_by_route(mock_database):
    mock_database.rpc = AsyncMock(return_value=[
        _entry(i, 0.9, f'2024-01-{i + 1:02d}') for i in range(20)
    ])
    message = "beach trip memories"
    executor = SearchExecutor(mock_database)

    result = await executor.execute(USER_ID, message, [0.1], _vector_plan(), assess_complexity(message),
                                    ROUTE_CONFIGURATIONS['fast_track'])
    assert len(result.combined) == 5


def _plan(search_strategy, **fields):
    return QueryPlan(
        strategy='intelligent_sql', complexity='moderate', requires_time_filter=False,
        requires_aggregation=False, search_strategy=search_strategy, execution_mode='parallel',
        expected_response_type='analysis', **fields
    )


@pytest.mark.asyncio
async def test_sql_only_skips_vector_search(mock_database):
    async def rpc(name, params):
        if name == 'match_journal_entries_by_theme':
            return [_entry(2, 0.6, '2024-01-02'), _entry(3, 0.5, '2024-01-01'), _entry(4, 0.4, '2023-12-31')]
        return []

    mock_database.rpc = AsyncMock(side_effect=rpc)
    diagnostics = SearchDiagnostics()
    diagnostics.log_vector_results = MagicMock()
    message = "entries about work"
    executor = SearchExecutor(mock_database)

    result = await executor.execute(USER_ID, message, [0.1], _plan('sql_only', theme_filters=['work']),
                                    assess_complexity(message), STANDARD, diagnostics=diagnostics)

    assert result.search_method == 'sql_only'
    assert result.vector_results == []
    assert [row['id'] for row in result.combined] == [2, 3, 4]
    called = [call[0][0] for call in mock_database.rpc.call_args_list]
    assert called == ['match_journal_entries_by_theme']
    diagnostics.log_vector_results.assert_not_called()
    assert diagnostics.sql['results_count'] == 3


@pytest.mark.asyncio
async def test_dual_sequential_runs_vector_before_sql(mock_database):
    order = []

    async def rpc(name, params):
        order.append(name)
        if name == 'match_journal_entries_fixed':
            return [_entry(1, 0.9, '2024-01-03'), _entry(5, 0.8, '2024-01-04')]
        return [_entry(2, 0.6, '2024-01-02')]

    mock_database.rpc = AsyncMock(side_effect=rpc)
    message = "entries about work"
    executor = SearchExecutor(mock_database)

    result = await executor.execute(USER_ID, message, [0.1],
                                    _plan('dual_sequential', theme_filters=['work'], emotion_filters=['anxiety']),
                                    assess_complexity(message), STANDARD)

    assert result.search_method == 'dual_sequential'
    assert order[0] == 'match_journal_entries_fixed'
    assert set(order[1:]) == {'match_journal_entries_by_theme', 'match_journal_entries_by_emotion'}
    assert {row['id'] for row in result.combined} == {1, 2, 5}


@pytest.mark.asyncio
async def test_sql_search_respects_route_concurrency(mock_database):
    in_flight = 0
    peak = 0

    async def rpc(name, params):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.01)
        in_flight -= 1
        return []

    mock_database.rpc = AsyncMock(side_effect=rpc)
    plan = _plan('sql_only', theme_filters=['work', 'family', 'health'],
                 emotion_filters=['anxiety', 'joy'], entity_keywords=['sarah'])
    executor = SearchExecutor(mock_database)

    await executor.sql_search(USER_ID, "work and family", plan, STANDARD.model_copy(update={'max_concurrency': 1}))
    assert mock_database.rpc.await_count == 6
    assert peak == 1

    peak = 0
    await executor.sql_search(USER_ID, "work and family", plan, STANDARD)
    assert 1 < peak <= STANDARD.max_concurrency
