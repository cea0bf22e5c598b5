import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from api.services.analysis import (
    EmotionAnalyzer, EntityExtractor, GoogleLanguageClient, SentimentAnalyzer,
    ThemeExtractor, sentiment_from_emotions
)
from lib.error_handler import AppError

ENTRY_TEXT = "Had a long day at work but dinner with my sister made me happy."


def test_sentiment_from_emotions():
    assert sentiment_from_emotions({'Joy': 0.8, 'Sadness': 0.3, 'Curiosity': 0.5}) == 0.5
    assert sentiment_from_emotions({'anger': 0.9, 'fear': 0.9}) == -1.0
    assert sentiment_from_emotions(None) == 0.0


@pytest.mark.asyncio
async def test_emotions_are_cleaned_and_capped(mock_openai, mock_storage):
    mock_openai.chat_json.return_value = {
        'joy': 0.9, 'gratitude': 1.4, 'calm': 0.05, 'hope': 0.4,
        'pride': 0.3, 'love': 0.2, 'bogus': 'high',
    }
    analyzer = EmotionAnalyzer(mock_openai, mock_storage)
    emotions = await analyzer.analyze(ENTRY_TEXT)

    assert emotions == {'gratitude': 1.0, 'joy': 0.9, 'hope': 0.4, 'pride': 0.3, 'love': 0.2}
    system_prompt = mock_openai.chat_json.call_args[0][0][0]['content']
    assert '- joy: Feeling happy' in system_prompt


@pytest.mark.asyncio
async def test_emotion_fallbacks(mock_openai, mock_storage):
    analyzer = EmotionAnalyzer(mock_openai, mock_storage)
    assert await analyzer.analyze("ok") == {"Neutral": 0.5}

    mock_openai.chat_json.side_effect = AppError("model down", status_code=502)
    assert await analyzer.analyze(ENTRY_TEXT) == {"Neutral": 0.5, "Curiosity": 0.3}

    mock_storage.get_emotion_catalogue.side_effect = AppError("db down", status_code=502)
    assert await analyzer.analyze(ENTRY_TEXT) == {"Joy": 0.3, "Sadness": 0.2}


@pytest.mark.asyncio
async def test_theme_extraction(mock_openai):
    mock_openai.chat_json.return_value = {'themes': ['work', ' family ', '', 'food', 'rest', 'joy', 'extra']}
    themes = await ThemeExtractor(mock_openai).extract(ENTRY_TEXT)
    assert themes == ['work', 'family', 'food', 'rest', 'joy']


@pytest.mark.asyncio
async def test_theme_fallback(mock_openai):
    mock_openai.chat_json.return_value = {'themes': []}
    assert await ThemeExtractor(mock_openai).extract(ENTRY_TEXT) == ['Personal', 'Experience', 'Reflection']

    mock_openai.chat_json.side_effect = AppError("model down", status_code=502)
    assert await ThemeExtractor(mock_openai).extract(ENTRY_TEXT) == ['Personal', 'Experience', 'Reflection']


def _language_client(result=None, error=None):
    client = MagicMock()
    client.call = AsyncMock(return_value=result, side_effect=error)
    return client


@pytest.mark.asyncio
async def test_sentiment_analyzer():
    client = _language_client({'documentSentiment': {'score': 0.6, 'magnitude': 1.2}})
    assert await SentimentAnalyzer(client).analyze(ENTRY_TEXT) == 0.6
    client.call.assert_awaited_once_with('analyzeSentiment', ENTRY_TEXT)

    assert await SentimentAnalyzer(_language_client({'documentSentiment': {'score': 3}})).analyze(ENTRY_TEXT) == 1.0
    assert await SentimentAnalyzer(_language_client({})).analyze(ENTRY_TEXT) is None
    assert await SentimentAnalyzer(_language_client(error=AppError("quota", 502))).analyze(ENTRY_TEXT) is None


@pytest.mark.asyncio
async def test_entity_extractor_dedupes():
    client = _language_client({'entities': [
        {'name': 'Sarah', 'type': 'PERSON'},
        {'name': 'sarah', 'type': 'PERSON'},
        {'name': 'Toronto', 'type': 'LOCATION'},
        {'name': '', 'type': 'OTHER'},
    ]})
    entities = await EntityExtractor(client).extract(ENTRY_TEXT)
    assert entities == [{'name': 'Sarah', 'type': 'person'}, {'name': 'Toronto', 'type': 'location'}]


@pytest.mark.asyncio
async def test_language_client_requires_key():
    with pytest.raises(AppError) as exc_info:
        await GoogleLanguageClient(api_key='').call('analyzeSentiment', ENTRY_TEXT)
    assert exc_info.value.status_code == 500


@pytest.mark.asyncio
async def test_language_client_posts_document():
    response = MagicMock()
    response.status = 200
    response.json = AsyncMock(return_value={'documentSentiment': {'score': 0.1}})
    response.__aenter__ = AsyncMock(return_value=response)
    response.__aexit__ = AsyncMock(return_value=False)

    session = MagicMock()
    session.post = MagicMock(return_value=response)
    session.__aenter__ = AsyncMock(return_value=session)
    session.__aexit__ = AsyncMock(return_value=False)

    client = GoogleLanguageClient(api_key='key-123', base_url='https://language.test/v1/documents')
    with patch('api.services.analysis.aiohttp.ClientSession', return_value=session):
        result = await client.call('analyzeSentiment', ENTRY_TEXT)

    assert result == {'documentSentiment': {'score': 0.1}}
    url = session.post.call_args[0][0]
    kwargs = session.post.call_args[1]
    assert url == 'https://language.test/v1/documents:analyzeSentiment'
    assert kwargs['params'] == {'key': 'key-123'}
    assert kwargs['json']['document'] == {'type': 'PLAIN_TEXT', 'content': ENTRY_TEXT}


@pytest.mark.asyncio
async def test_language_client_wraps_timeout():
    session = MagicMock()
    session.post = MagicMock(side_effect=asyncio.TimeoutError())
    session.__aenter__ = AsyncMock(return_value=session)
    session.__aexit__ = AsyncMock(return_value=False)

    client = GoogleLanguageClient(api_key='key-123')
    with patch('api.services.analysis.aiohttp.ClientSession', return_value=session):
        with pytest.raises(AppError) as exc_info:
            await client.call('analyzeSentiment', ENTRY_TEXT)
    assert exc_info.value.status_code == 502


@pytest.mark.asyncio
async def test_analyzers_fall_back_on_timeout():
    client = _language_client(error=asyncio.TimeoutError())
    assert await SentimentAnalyzer(client).analyze(ENTRY_TEXT) is None
    assert await EntityExtractor(client).extract(ENTRY_TEXT) == []
