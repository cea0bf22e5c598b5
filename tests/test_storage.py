from unittest.mock import MagicMock

import pytest

from api.services.storage import StorageService
from lib.database import Database, JOURNAL_TABLE
from lib.error_handler import AppError


def _result(data=None, count=None):
    result = MagicMock()
    result.data = data
    result.count = count
    return result


@pytest.fixture
def supabase_client():
    return MagicMock()


@pytest.mark.asyncio
async def test_select_builds_filters(supabase_client):
    query = supabase_client.table.return_value.select.return_value
    query.eq.return_value = query
    query.gte.return_value = query
    query.lte.return_value = query
    query.order.return_value = query
    query.limit.return_value = query
    query.execute.return_value = _result([{'id': 1}])

    rows = await Database(supabase_client).select(
        JOURNAL_TABLE, columns='id', eq={'user_id': 'u1'}, gte={'created_at': 'a'},
        lte={'created_at': 'b'}, order='created_at', limit=5
    )

    assert rows == [{'id': 1}]
    supabase_client.table.assert_called_with('Journal Entries')
    query.eq.assert_called_once_with('user_id', 'u1')
    query.order.assert_called_once_with('created_at', desc=True)
    query.limit.assert_called_once_with(5)


@pytest.mark.asyncio
async def test_errors_become_app_errors(supabase_client):
    supabase_client.rpc.return_value.execute.side_effect = Exception("connection reset")
    with pytest.raises(AppError) as exc_info:
        await Database(supabase_client).rpc('match_journal_entries_fixed', {})
    assert exc_info.value.status_code == 502


@pytest.mark.asyncio
async def test_insert_requires_returned_row(supabase_client):
    supabase_client.table.return_value.insert.return_value.execute.return_value = _result([])
    with pytest.raises(AppError):
        await Database(supabase_client).insert('chat_threads', {'title': 'x'})


@pytest.mark.asyncio
async def test_count_entries(supabase_client):
    query = supabase_client.table.return_value.select.return_value
    query.eq.return_value = query
    query.execute.return_value = _result([], count=7)

    assert await Database(supabase_client).count_entries('u1') == 7
    supabase_client.table.return_value.select.assert_called_with('id', count='exact')


@pytest.mark.asyncio
async def test_upsert_on_conflict(supabase_client):
    supabase_client.table.return_value.upsert.return_value.execute.return_value = _result([{'id': 1}])
    await Database(supabase_client).upsert('journal_embeddings', {'journal_entry_id': 1},
                                           on_conflict='journal_entry_id')
    supabase_client.table.return_value.upsert.assert_called_once_with(
        {'journal_entry_id': 1}, on_conflict='journal_entry_id'
    )


@pytest.mark.asyncio
async def test_ensure_thread_creates_when_missing(mock_database):
    mock_database.insert.return_value = {'id': 'thread-9'}
    storage = StorageService(mock_database)

    assert await storage.ensure_thread('u1', 'thread-1', 'hello') == 'thread-1'
    mock_database.insert.assert_not_called()

    assert await storage.ensure_thread('u1', None, 'How have I been sleeping lately?') == 'thread-9'
    table, row = mock_database.insert.call_args[0]
    assert table == 'chat_threads'
    assert row['title'] == 'How have I been sleeping lately?'


@pytest.mark.asyncio
async def test_append_message_touches_thread(mock_database):
    storage = StorageService(mock_database)
    await storage.append_message('thread-1', 'assistant', 'reply',
                                 reference_entries=[{'id': 1}], analysis_data={'type': 'general'})

    table, row = mock_database.insert.call_args[0]
    assert table == 'chat_messages'
    assert row['reference_entries'] == [{'id': 1}]
    assert row['analysis_data'] == {'type': 'general'}
    assert mock_database.update.call_args[0][:2] == ('chat_threads', {'id': 'thread-1'})

    with pytest.raises(AppError):
        await storage.append_message('thread-1', 'system', 'nope')


@pytest.mark.asyncio
async def test_thread_history_is_oldest_first(mock_database):
    mock_database.select.return_value = [
        {'sender': 'assistant', 'content': 'newest'},
        {'sender': 'user', 'content': 'older'},
    ]
    history = await StorageService(mock_database).get_thread_history('thread-1')
    assert history == [
        {'role': 'user', 'content': 'older'},
        {'role': 'assistant', 'content': 'newest'},
    ]


@pytest.mark.asyncio
async def test_ensure_profile(mock_database):
    storage = StorageService(mock_database)
    await storage.ensure_profile('u1')
    assert mock_database.insert.call_args[0][0] == 'profiles'

    mock_database.insert.reset_mock()
    mock_database.select.return_value = [{'id': 'u1'}]
    await storage.ensure_profile('u1')
    mock_database.insert.assert_not_called()


@pytest.mark.asyncio
async def test_known_themes_are_distinct(mock_database):
    mock_database.select.return_value = [
        {'master_themes': ['work', 'family']},
        {'master_themes': None},
        {'master_themes': ['work', 'health']},
    ]
    assert await StorageService(mock_database).get_known_themes('u1') == ['work', 'family', 'health']
