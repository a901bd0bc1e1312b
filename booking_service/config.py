from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite:///./booking_service.db"
    # This service needs to know the secret to VERIFY tokens
    SECRET_KEY: str = "change-me"
    ALGORITHM: str = "HS256"

    # Listing/profile service, read once when a booking is created
    LISTING_SERVICE_URL: str = "http://backend:8000"
    LISTING_SERVICE_TIMEOUT_SECONDS: float = 5.0

    KAFKA_BOOTSTRAP_SERVERS: str = "kafka:9092"
    KAFKA_CHAT_TOPIC: str = "chat_commands"
    KAFKA_RATING_TOPIC: str = "rating_updates"

    REDIS_URL: str = "redis://redis:6379/0"

    # Lifecycle timing
    APPROVAL_TIMEOUT_HOURS: int = 24
    REVIEW_WINDOW_DAYS: int = 14
    REVIEW_FALLBACK_DAYS: int = 14
    AUTO_PUBLISH_LONE_REVIEWS: bool = True

    # Optimistic transactions are re-run this many times before giving up
    TRANSACTION_MAX_ATTEMPTS: int = 5

    BOOKING_HASH_PREFIX: str = "FN"

    SCHEDULER_ENABLED: bool = True
    SCHEDULER_POLL_SECONDS: int = 60
    EXPIRY_SWEEP_INTERVAL_SECONDS: int = 3600
    REVIEW_SWEEP_INTERVAL_SECONDS: int = 86400
    PAIR_REVEAL_SWEEP_INTERVAL_SECONDS: int = 3600

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()
