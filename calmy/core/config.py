from dotenv import load_dotenv
from pydantic_settings import BaseSettings
from typing import List, Optional

load_dotenv()

class Settings(BaseSettings):
    PROJECT_NAME: str = "CalMyCare Chat"

    # Gemini settings
    GOOGLE_API_KEY: Optional[str] = None
    MODEL_NAME: str = "gemini-2.0-flash"
    TEMPERATURE: float = 0.5 # Low on purpose, answers should stay consistent
    GENERATION_TIMEOUT_SECONDS: float = 30.0 # Applies to opening the stream and to each chunk

    # Conversation settings
    HISTORY_LIMIT: int = 10
    SAFETY_PREFILTER_ENABLED: bool = True
    ENFORCE_USER_BINDING: bool = True

    # Persistence settings
    PERSIST_TIMEOUT_SECONDS: float = 10.0
    PERSIST_MAX_ATTEMPTS: int = 3
    PERSIST_RETRY_BACKOFF_SECONDS: float = 0.5
    AUTO_CREATE_TABLES: bool = True

    # Takes precedence over the SUPABASE_DB_* parts when set
    DATABASE_URL: Optional[str] = None
    SUPABASE_DB_HOST: Optional[str] = None
    SUPABASE_DB_PORT: int = 5432
    SUPABASE_DB_NAME: str = "postgres"
    SUPABASE_DB_USER: str = "postgres"
    SUPABASE_DB_PASSWORD: Optional[str] = None
    SUPABASE_DB_SSL_MODE: str = "require"

    # Supabase API (auth)
    SUPABASE_URL: Optional[str] = None
    SUPABASE_KEY: Optional[str] = None

    CORS_ALLOW_ORIGINS: List[str] = ["*"]

    LOG_LEVEL: str = "INFO"
    LOG_FILE: Optional[str] = "calmy.log"

    # Chat client
    CHAT_API_URL: str = "http://localhost:8000"
    CLIENT_TIMEOUT_SECONDS: float = 60.0

    class Config:
        env_file = ".env"
        extra = "ignore"

settings = Settings()
