from typing import Optional
import logging

logger = logging.getLogger(__name__)


class AppError(Exception):
    def __init__(self, message: str, status_code: int = 500, user_message: Optional[str] = None):
        self.message = message
        self.status_code = status_code
        self.user_message = user_message or "An error occurred. Please try again later."
        super().__init__(self.message)


class ValidationError(AppError):
    def __init__(self, message: str, user_message: Optional[str] = None):
        super().__init__(message, status_code=400, user_message=user_message or message)


class ErrorHandler:
    @staticmethod
    def handle_transcription_error(error: Exception) -> str:
        logger.error(f"Transcription error: {str(error)}")
        return "Sorry, I couldn't transcribe your audio. Please try recording it again."

    @staticmethod
    def handle_storage_error(error: Exception) -> str:
        logger.error(f"Storage error: {str(error)}")
        return "There was an issue saving your journal entry. Please try again."

    @staticmethod
    def handle_chat_error(error: Exception) -> str:
        logger.error(f"Chat error: {str(error)}", exc_info=True)
        return (
            "I encountered an error while analyzing your journal entries. "
            "Please try rephrasing your question or try again in a moment."
        )

    @staticmethod
    def handle_analysis_error(error: Exception) -> str:
        logger.error(f"Analysis error: {str(error)}")
        return "Journal analysis is temporarily unavailable."
