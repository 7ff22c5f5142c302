import logging
from fastapi import HTTPException, status, Depends
from calmy.core.config import settings
from calmy.database import get_session_factory
from calmy.services.auth import SupabaseAuthVerifier
from calmy.services.chat_gateway import ChatGateway
from calmy.services.conversation import ConversationService
from calmy.services.llm_service import GeminiChatService
from calmy.services.supabase_client import get_supabase_client

logger = logging.getLogger(__name__)

# --- Caching Instances ---
# Use global variables for simple instance caching during app lifetime
_llm_service_instance = None
_auth_verifier_instance = None
# --- End Caching Instances ---

def get_llm_service() -> GeminiChatService:
    """
    Provides a singleton instance of GeminiChatService for FastAPI dependency injection.

    Raises:
        HTTPException: 500 if the API key is missing or the client cannot be created.
    """
    global _llm_service_instance
    if _llm_service_instance is None:
        if not settings.GOOGLE_API_KEY:
            logger.error("GOOGLE_API_KEY is not configured")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Missing API Key"
            )

        try:
            _llm_service_instance = GeminiChatService(
                api_key=settings.GOOGLE_API_KEY,
                model=settings.MODEL_NAME,
                temperature=settings.TEMPERATURE,
                timeout_seconds=settings.GENERATION_TIMEOUT_SECONDS,
            )
        except ConnectionError as e:
            logger.error(f"Could not initialize GeminiChatService: {e}")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Assistant is unavailable right now."
            )

    return _llm_service_instance

def get_auth_verifier() -> SupabaseAuthVerifier:
    global _auth_verifier_instance
    if _auth_verifier_instance is None:
        try:
            _auth_verifier_instance = SupabaseAuthVerifier(get_supabase_client())
        except RuntimeError as e:
            logger.error(f"Could not initialize SupabaseAuthVerifier: {e}")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Assistant is unavailable right now."
            )
    return _auth_verifier_instance

def get_conversation_service() -> ConversationService:
    """
    Provides a ConversationService bound to the shared session factory.
    The service opens a short-lived session per operation.
    """
    try:
        session_factory = get_session_factory()
    except Exception as e:
        logger.error(f"Could not initialize ConversationService: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Assistant is unavailable right now."
        )
    return ConversationService(
        session_factory=session_factory,
        timeout_seconds=settings.PERSIST_TIMEOUT_SECONDS,
        max_attempts=settings.PERSIST_MAX_ATTEMPTS,
        retry_backoff_seconds=settings.PERSIST_RETRY_BACKOFF_SECONDS,
    )

def get_chat_gateway(
    llm_service: GeminiChatService = Depends(get_llm_service),
    conversation_svc: ConversationService = Depends(get_conversation_service),
    auth_verifier: SupabaseAuthVerifier = Depends(get_auth_verifier),
) -> ChatGateway:
    """Builds the ChatGateway for one request from its injected collaborators."""
    return ChatGateway(
        llm=llm_service,
        store=conversation_svc,
        auth_verifier=auth_verifier,
        history_limit=settings.HISTORY_LIMIT,
        enforce_user_binding=settings.ENFORCE_USER_BINDING,
        safety_prefilter=settings.SAFETY_PREFILTER_ENABLED,
    )
