import os
import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

# Add project root to Python path
project_root = str(Path(__file__).parent.parent)
sys.path.append(project_root)

os.environ.setdefault('OPENAI_API_KEY', 'test-openai-key')
os.environ.setdefault('SUPABASE_URL', 'https://test.supabase.co')
os.environ.setdefault('SUPABASE_KEY', 'test-supabase-key')
os.environ.setdefault('GOOGLE_API_KEY', 'test-google-key')

# Mock Supabase before importing app
import supabase


def mock_create_client(*args, **kwargs):
    mock_client = MagicMock()
    mock_client.table = MagicMock()
    mock_client.rpc = MagicMock()
    mock_client.auth = MagicMock()
    return mock_client


supabase.create_client = mock_create_client

# Now we can safely import the app
from api.routes import app  # noqa: E402

USER_ID = '123e4567-e89b-12d3-a456-426614174000'


@pytest.fixture
def test_client():
    app.config['TESTING'] = True
    return app.test_client()


@pytest.fixture
def user_id():
    return USER_ID


@pytest.fixture
def mock_database():
    db = MagicMock()
    db.rpc = AsyncMock(return_value=[])
    db.select = AsyncMock(return_value=[])
    db.insert = AsyncMock(return_value={'id': 1})
    db.update = AsyncMock(return_value=[])
    db.upsert = AsyncMock(return_value=[])
    db.count = AsyncMock(return_value=0)
    db.count_entries = AsyncMock(return_value=5)
    return db


@pytest.fixture
def mock_openai():
    client = MagicMock()
    client.chat = AsyncMock(return_value="Test response")
    client.chat_json = AsyncMock(return_value={})
    client.embed = AsyncMock(return_value=[0.1] * 8)
    client.transcribe = AsyncMock(return_value="Test transcription")
    return client


@pytest.fixture
def mock_storage():
    storage = MagicMock()
    storage.ensure_thread = AsyncMock(return_value='thread-1')
    storage.append_message = AsyncMock(return_value={'id': 'msg-1'})
    storage.get_thread_history = AsyncMock(return_value=[])
    storage.insert_entry = AsyncMock(return_value={'id': 42})
    storage.update_entry = AsyncMock()
    storage.get_entry = AsyncMock(return_value=None)
    storage.entries_in_range = AsyncMock(return_value=[])
    storage.store_embedding = AsyncMock()
    storage.ensure_profile = AsyncMock()
    storage.get_emotion_catalogue = AsyncMock(return_value=[
        {'name': 'joy', 'description': 'Feeling happy'},
        {'name': 'sadness', 'description': 'Feeling down'},
        {'name': 'anxiety', 'description': 'Feeling worried'},
    ])
    storage.get_emotion_names = AsyncMock(return_value=['joy', 'sadness', 'anxiety'])
    storage.get_known_themes = AsyncMock(return_value=['work', 'family'])
    return storage
