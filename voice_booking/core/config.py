from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    PROJECT_NAME: str = "Voice Booking Backend"
    API_V1_STR: str = "/api"

    # Server
    PORT: int = 8000
    ENVIRONMENT: str = "development"
    APP_BASE_URL: str = "http://localhost:8000"

    # Vapi
    VAPI_PRIVATE_KEY: str = ""

    # OpenAI
    OPENAI_API_KEY: str = ""
    OPENAI_MODEL: str = "gpt-4o-mini"
    OPENAI_TIMEOUT_SECONDS: float = 6.0
    OPENAI_MAX_RETRIES: int = 1

    # Supabase
    SUPABASE_URL: str = ""
    SUPABASE_KEY: str = ""

    # NexHealth
    NEXHEALTH_API_BASE_URL: str = "https://nexhealth.info"
    NEXHEALTH_API_KEY: str = ""
    NEXHEALTH_TIMEOUT_SECONDS: int = 10
    NEXHEALTH_TOKEN_BUFFER_SECONDS: int = 60

    # Scheduling
    DEFAULT_TIMEZONE: str = "America/Chicago"
    MAX_OFFERED_SLOTS: int = 3
    URGENT_SEARCH_DAYS: int = 7
    TRANSCRIPT_RETRY_DELAY_SECONDS: float = 3.0

    class Config:
        env_file = ".env"
        case_sensitive = True

settings = Settings()
