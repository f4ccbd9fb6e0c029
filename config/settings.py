import os
from dataclasses import dataclass


@dataclass
class Settings:
    SECRET_KEY: str = os.getenv("SECRET_KEY", "dev-secret-change-me-to-32-chars-or-more")
    ALGORITHM: str = os.getenv("ALGORITHM", "HS256")
    ACCESS_TOKEN_EXPIRE_MINUTES: int = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "15"))
    REFRESH_TOKEN_EXPIRE_DAYS: int = int(os.getenv("REFRESH_TOKEN_EXPIRE_DAYS", "7"))
    TOKEN_ISSUER: str = os.getenv("TOKEN_ISSUER", "coworking")
    TOKEN_AUDIENCE: str = os.getenv("TOKEN_AUDIENCE", "coworking-api")

    DB_PATH: str = os.getenv("DB_PATH", "./app.db")
    DB_TIMEOUT_SECONDS: float = float(os.getenv("DB_TIMEOUT_SECONDS", "5"))

    # пустой ключ - используем заглушку вместо Stripe
    STRIPE_SECRET_KEY: str = os.getenv("STRIPE_SECRET_KEY", "")
    STRIPE_WEBHOOK_SECRET: str = os.getenv("STRIPE_WEBHOOK_SECRET", "whsec_dev")
    STRIPE_CURRENCY: str = os.getenv("STRIPE_CURRENCY", "usd")

    PUSHER_APP_ID: str = os.getenv("PUSHER_APP_ID", "")
    PUSHER_KEY: str = os.getenv("PUSHER_KEY", "")
    PUSHER_SECRET: str = os.getenv("PUSHER_SECRET", "")
    PUSHER_CLUSTER: str = os.getenv("PUSHER_CLUSTER", "us2")

    CORS_ORIGINS: str = os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:8000")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    RENEWAL_WINDOW_MINUTES: int = int(os.getenv("RENEWAL_WINDOW_MINUTES", "60"))

    @property
    def cors_origins(self):
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def stripe_enabled(self) -> bool:
        return bool(self.STRIPE_SECRET_KEY)

    @property
    def pusher_enabled(self) -> bool:
        return bool(self.PUSHER_APP_ID and self.PUSHER_KEY and self.PUSHER_SECRET)

settings = Settings()
