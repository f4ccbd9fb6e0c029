import logging
from datetime import timedelta
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config.settings import Settings, settings as default_settings
from core.services.notifier import Notifier
from core.services.payment_provider import PaymentProvider
from core.services.token_service import TokenService
from infrastructure.db.sqlite import init_db
from infrastructure.payments.stripe_provider import StripePaymentProvider
from infrastructure.payments.stub_provider import StubPaymentProvider
from infrastructure.realtime.logging_notifier import LoggingNotifier
from infrastructure.realtime.pusher_notifier import PusherNotifier
from infrastructure.security.jwt_tokens import JoseTokenService
from infrastructure.web.errors import register_error_handlers
from infrastructure.web.controllers.auth_controller import router as auth_router
from infrastructure.web.controllers.catalog_controller import router as catalog_router
from infrastructure.web.controllers.membership_controller import router as membership_router
from infrastructure.web.controllers.booking_controller import router as booking_router
from infrastructure.web.controllers.payment_controller import router as payment_router
from infrastructure.web.controllers.webhook_controller import router as webhook_router
from infrastructure.web.controllers.order_controller import router as order_router
from infrastructure.web.controllers.admin_controller import router as admin_router

logger = logging.getLogger(__name__)


def build_payment_provider(settings: Settings) -> PaymentProvider:
    if settings.stripe_enabled:
        return StripePaymentProvider(settings.STRIPE_SECRET_KEY, settings.STRIPE_WEBHOOK_SECRET)
    logger.warning("STRIPE_SECRET_KEY is not set, using the stub payment provider")
    return StubPaymentProvider(settings.STRIPE_WEBHOOK_SECRET)


def build_notifier(settings: Settings) -> Notifier:
    if settings.pusher_enabled:
        return PusherNotifier(settings.PUSHER_APP_ID, settings.PUSHER_KEY, settings.PUSHER_SECRET,
                              settings.PUSHER_CLUSTER)
    return LoggingNotifier()


def build_token_service(settings: Settings) -> TokenService:
    return JoseTokenService(
        secret_key=settings.SECRET_KEY,
        algorithm=settings.ALGORITHM,
        issuer=settings.TOKEN_ISSUER,
        audience=settings.TOKEN_AUDIENCE,
        access_ttl=timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
        refresh_ttl=timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS),
    )


def create_app(settings: Optional[Settings] = None, payment_provider: Optional[PaymentProvider] = None,
               notifier: Optional[Notifier] = None, token_service: Optional[TokenService] = None) -> FastAPI:
    settings = settings or default_settings
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(title="Coworking services")

    # сервисы создаются один раз и передаются в обработчики через Depends
    app.state.settings = settings
    app.state.payment_provider = payment_provider or build_payment_provider(settings)
    app.state.notifier = notifier or build_notifier(settings)
    app.state.token_service = token_service or build_token_service(settings)

    # от CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)

    @app.on_event("startup")
    def on_startup():
        init_db(settings.DB_PATH)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    for router in (auth_router, catalog_router, membership_router, booking_router, payment_router,
                   webhook_router, order_router, admin_router):
        app.include_router(router)
    return app


app = create_app()
