from decimal import Decimal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    DATABASE_URL: str
    # Tokens are issued by the auth service, this service only verifies them
    SECRET_KEY: str
    ALGORITHM: str = "HS256"

    # Razorpay credentials. Leaving either empty disables the gateway.
    RAZORPAY_KEY_ID: str = ""
    RAZORPAY_KEY_SECRET: str = ""
    CURRENCY: str = "INR"

    # --- Settlement policy ---
    PLATFORM_PAYEE_ID: str = "platform"
    PLATFORM_CUT_RATE: Decimal = Decimal("0.10")
    CANCELLATION_PENALTY: Decimal = Decimal("50")
    PENALTY_OWNER_SHARE: Decimal = Decimal("40")
    PENALTY_PLATFORM_SHARE: Decimal = Decimal("10")
    LEDGER_ATOMIC_INCREMENT: bool = True

    # --- Kafka / outbox ---
    KAFKA_BOOTSTRAP_SERVERS: str = "kafka:9092"
    KAFKA_BOOKING_TOPIC: str = "booking_events"
    OUTBOX_POLLER_ENABLED: bool = True

    REDIS_URL: str = "redis://redis:6379/0"
    RATE_LIMIT_ENABLED: bool = True

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()
