from flask import Flask, request, jsonify
from flask_cors import CORS
import logging
import sys
from datetime import datetime, timezone

from api.rag.classifier import classify_message
from api.rag.responder import ResponseGenerator
from api.rag.search import SearchExecutor
from api.rag.sql import GeneratedSQLExecutor, SQLQueryGenerator
from api.services.analysis import (
    EmotionAnalyzer, EntityExtractor, SentimentAnalyzer, ThemeExtractor, GoogleLanguageClient
)
from api.services.audio import AudioService
from api.services.chat import ChatService
from api.services.insights import InsightsService
from api.services.journal import JournalService
from api.services.storage import StorageService
from lib.database import Database
from lib.error_handler import AppError, ErrorHandler, ValidationError
from lib.openai_client import OpenAIClient

# Configure detailed logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    stream=sys.stdout,
    force=True  # Ensure our config takes precedence
)

logger = logging.getLogger(__name__)

app = Flask(__name__)
CORS(app, resources={r"/*": {"origins": "*"}},
     allow_headers=['authorization', 'x-client-info', 'apikey', 'content-type'])

# Initialize clients
logger.info("Initializing OpenAI client...")
openai_client = OpenAIClient()

logger.info("Initializing Supabase client...")
try:
    database = Database()
    logger.info("Supabase client initialized successfully")
except Exception as e:
    logger.error(f"Error initializing Supabase client: {str(e)}")
    raise

# Initialize services
logger.info("Initializing services...")
storage_service = StorageService(database)
audio_service = AudioService(openai_client)
language_client = GoogleLanguageClient()
emotion_analyzer = EmotionAnalyzer(openai_client, storage_service)
theme_extractor = ThemeExtractor(openai_client)
sentiment_analyzer = SentimentAnalyzer(language_client)
entity_extractor = EntityExtractor(language_client)

journal_service = JournalService(
    storage_service=storage_service,
    audio_service=audio_service,
    openai_client=openai_client,
    emotion_analyzer=emotion_analyzer,
    theme_extractor=theme_extractor,
    sentiment_analyzer=sentiment_analyzer,
    entity_extractor=entity_extractor
)

sql_executor = GeneratedSQLExecutor(database, SQLQueryGenerator(openai_client))
chat_service = ChatService(
    database=database,
    openai_client=openai_client,
    storage_service=storage_service,
    search_executor=SearchExecutor(database, sql_executor),
    responder=ResponseGenerator(openai_client)
)
insights_service = InsightsService(storage_service, openai_client)
logger.info("All services initialized successfully")


def _body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _require_text(data: dict) -> str:
    text = data.get('text')
    if not text or not isinstance(text, str) or not text.strip():
        raise ValidationError("No text provided for analysis")
    return text


@app.errorhandler(ValidationError)
def handle_validation_error(error: ValidationError):
    logger.warning(f"Validation error on {request.path}: {error.message}")
    return jsonify({'success': False, 'error': error.user_message}), 400


@app.route('/health', methods=['GET'])
def health():
    """Basic health check"""
    return jsonify({
        'status': 'healthy',
        'timestamp': datetime.now(timezone.utc).isoformat(),
        'routing': chat_service.router.routing_analytics(),
    })


@app.route('/transcribe-audio', methods=['POST'])
async def transcribe_audio():
    data = _body()
    try:
        result = await journal_service.create_entry_from_audio(
            user_id=data.get('userId'),
            audio_b64=data.get('audio'),
            direct_transcription=bool(data.get('directTranscription', False)),
            audio_url=data.get('audioUrl')
        )
    except ValidationError:
        raise
    except AppError as e:
        message = ErrorHandler.handle_transcription_error(e)
        return jsonify({'success': False, 'error': message, 'details': e.message}), e.status_code

    payload = {'success': True, 'transcription': result['transcription']}
    if 'entry_id' in result:
        payload.update({
            'entryId': result['entry_id'],
            'foreignKey': result['foreign_key'],
            'processing': result.get('processing'),
        })
    return jsonify(payload)


@app.route('/process-journal', methods=['POST'])
async def process_journal():
    data = _body()
    entry_id = data.get('entryId')
    if entry_id is None:
        raise ValidationError("Entry ID is required")

    try:
        result = await journal_service.process_entry(entry_id)
    except ValidationError:
        raise
    except AppError as e:
        message = e.user_message if e.status_code == 404 else ErrorHandler.handle_storage_error(e)
        return jsonify({'success': False, 'error': message}), e.status_code

    return jsonify({
        'success': True,
        'entryId': result['entry_id'],
        'embeddingStored': result['embedding_stored'],
        'emotions': result['emotions'],
        'themes': result['themes'],
        'entities': result['entities'],
        'sentiment': result['sentiment'],
    })


@app.route('/chat-with-rag', methods=['POST'])
async def chat_with_rag():
    data = _body()
    try:
        result = await chat_service.process_message(
            user_id=data.get('userId'),
            message=data.get('message'),
            thread_id=data.get('threadId'),
            conversation_context=data.get('conversationContext') or [],
            time_range=data.get('timeRange'),
            user_timezone=data.get('userTimezone') or 'UTC'
        )
    except ValidationError:
        raise
    except Exception as e:
        return jsonify({'error': 'Internal server error', 'data': ErrorHandler.handle_chat_error(e)}), 200

    return jsonify({
        'data': result['data'],
        'references': result.get('references', []),
        'analysis': result.get('analysis'),
        'route': result.get('route'),
        'diagnostics': result.get('diagnostics'),
        'threadId': result.get('thread_id'),
    })


@app.route('/chat-query-classifier', methods=['POST'])
def chat_query_classifier():
    data = _body()
    message = data.get('message')
    if not isinstance(message, str) or not message.strip():
        raise ValidationError("Message is required")

    classification = classify_message(message)
    return jsonify({
        'category': classification.category,
        'confidence': classification.confidence,
        'shouldUseJournal': classification.should_use_journal,
        'reasoning': classification.reasoning,
    })


@app.route('/smart-query-planner', methods=['POST'])
async def smart_query_planner():
    data = _body()
    try:
        result = await chat_service.plan_only(
            user_id=data.get('userId'),
            message=data.get('message'),
            time_range=data.get('timeRange'),
            user_timezone=data.get('userTimezone') or 'UTC'
        )
    except ValidationError:
        raise
    except Exception as e:
        return jsonify({'error': ErrorHandler.handle_chat_error(e)}), 200

    return jsonify({
        'classification': result['classification'],
        'complexity': result['complexity'],
        'plan': result['plan'],
        'routing': result['routing'],
        'routeConfig': result['route_config'],
        'queryTypes': result['query_types'],
        'isMentalHealthQuery': result['is_mental_health_query'],
        'entryCount': result['entry_count'],
    })


@app.route('/analyze-emotions', methods=['POST'])
async def analyze_emotions():
    data = _body()
    text = _require_text(data)
    emotions = await emotion_analyzer.analyze(text)

    entry_id = data.get('entryId')
    if entry_id is not None:
        try:
            await storage_service.update_entry(entry_id, {'emotions': emotions})
        except AppError as e:
            ErrorHandler.handle_storage_error(e)

    return jsonify({'success': True, 'emotions': emotions})


@app.route('/generate-themes', methods=['POST'])
async def generate_themes():
    data = _body()
    text = _require_text(data)
    themes = await theme_extractor.extract(text)

    entry_id = data.get('entryId')
    if entry_id is not None:
        try:
            await storage_service.update_entry(entry_id, {'master_themes': themes})
        except AppError as e:
            ErrorHandler.handle_storage_error(e)

    return jsonify({'success': True, 'themes': themes})


@app.route('/analyze-sentiment', methods=['POST'])
async def analyze_sentiment():
    data = _body()
    text = _require_text(data)
    sentiment = await sentiment_analyzer.analyze(text)

    entry_id = data.get('entryId')
    if entry_id is not None and sentiment is not None:
        try:
            await storage_service.update_entry(entry_id, {'sentiment': sentiment})
        except AppError as e:
            ErrorHandler.handle_storage_error(e)

    return jsonify({'success': sentiment is not None, 'sentiment': sentiment})


@app.route('/journal-summary', methods=['POST'])
async def journal_summary():
    data = _body()
    user_id = data.get('userId')
    if not user_id:
        raise ValidationError("User ID is required")

    try:
        days = int(data.get('days', 7))
    except (TypeError, ValueError):
        raise ValidationError("days must be an integer")

    try:
        result = await insights_service.journal_summary(user_id, days=max(1, days))
    except Exception as e:
        return jsonify({
            'summary': "Journal summary temporarily unavailable.",
            'topEntities': [],
            'hasEntries': False,
            'error': ErrorHandler.handle_analysis_error(e),
        }), 200

    payload = {
        'summary': result['summary'],
        'topEntities': result['top_entities'],
        'hasEntries': result['has_entries'],
    }
    if 'entry_count' in result:
        payload['entryCount'] = result['entry_count']
    if 'error' in result:
        payload['error'] = result['error']
    return jsonify(payload)
