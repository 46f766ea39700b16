"""InternHub API - Main Application."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse

from internhub.certificates.renderer import CertificateRenderer
from internhub.certificates.router import router as certificates_router
from internhub.certificates.service import CertificateIssuanceService
from internhub.config import get_settings
from internhub.core.database import init_async_cassandra, shutdown_async_cassandra
from internhub.core.exceptions import register_exception_handlers
from internhub.core.logging import configure_structlog, get_logger
from internhub.core.middleware import RequestContextMiddleware
from internhub.core.redis import init_redis, shutdown_redis
from internhub.email.service import EmailService
from internhub.enrollments.router import programs_router
from internhub.enrollments.router import router as enrollments_router
from internhub.enrollments.service import EnrollmentService
from internhub.enrollments.store import EnrollmentStore
from internhub.health import router as health_router
from internhub.notifications.router import router as notifications_router
from internhub.notifications.service import NotificationDispatcher, NotificationService
from internhub.payments.gateway import RazorpayGateway
from internhub.payments.router import router as payments_router
from internhub.payments.service import PaymentSettlementService
from internhub.storage.service import FirebaseStorageService
from internhub.tasks.router import router as tasks_router
from internhub.tasks.service import SubmissionReviewWorkflow


# Configure logging early (before creating logger)
settings = get_settings()
configure_structlog(settings)

logger = get_logger(__name__)


def _init_email_service() -> EmailService | None:
    if not settings.email_configured:
        return None
    try:
        email_service = EmailService.from_settings(settings)
    except Exception as e:
        logger.warning(
            "email_service_init_skipped",
            error=str(e),
            message="Running without email service",
        )
        return None
    logger.info("email_service_initialized", sender=settings.email_sender_address)
    return email_service


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    logger.info(
        "starting_application",
        app_name=settings.app_name,
        version=settings.app_version,
        environment=settings.environment,
    )

    # Redis is optional: notifications are still stored without it
    app.state.redis = None
    try:
        app.state.redis = await init_redis()
        logger.info("redis_initialized")
    except Exception as e:
        logger.warning(
            "redis_init_skipped",
            error=str(e),
            message="Running without Redis - real-time notifications disabled",
        )

    gateway: RazorpayGateway | None = None
    dispatcher: NotificationDispatcher | None = None

    try:
        session = await init_async_cassandra()
        logger.info("cassandra_initialized")

        store = EnrollmentStore(session=session, keyspace=settings.cassandra_keyspace)

        app.state.notification_service = NotificationService(
            session=session,
            keyspace=settings.cassandra_keyspace,
            redis=app.state.redis,
        )
        dispatcher = NotificationDispatcher(
            notification_service=app.state.notification_service,
            email_service=_init_email_service(),
        )
        logger.info(
            "notification_service_initialized",
            redis_enabled=app.state.redis is not None,
        )

        app.state.enrollment_service = EnrollmentService(store)
        app.state.review_workflow = SubmissionReviewWorkflow(store, dispatcher, settings)
        logger.info("enrollment_services_initialized")

        if settings.razorpay_configured:
            gateway = RazorpayGateway.from_settings(settings)
            app.state.payment_service = PaymentSettlementService(
                store, gateway, dispatcher, settings
            )
            logger.info("payment_service_initialized")
        else:
            logger.warning(
                "payment_service_skipped",
                message="Razorpay credentials missing - payments disabled",
            )

        renderer = None
        if settings.firebase_configured:
            renderer = CertificateRenderer(FirebaseStorageService(settings))
        app.state.certificate_service = CertificateIssuanceService(
            store, dispatcher, settings, renderer=renderer
        )
        logger.info(
            "certificate_service_initialized", documents_enabled=renderer is not None
        )
    except Exception as e:
        logger.warning(
            "database_init_skipped",
            error=str(e),
            message="Running without database connection",
        )

    yield

    # Shutdown
    logger.info("shutting_down_application")
    if dispatcher:
        await dispatcher.drain()
    if gateway:
        await gateway.aclose()
    await shutdown_redis()
    await shutdown_async_cassandra()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    # Stack traces never reach responses; the handlers below log them instead
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Internship progression, payment settlement and certification API",
        debug=False,
        lifespan=lifespan,
        default_response_class=ORJSONResponse,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        openapi_url="/openapi.json" if settings.is_development else None,
    )

    # Request context middleware (must be added first - outermost)
    app.add_middleware(
        RequestContextMiddleware,
        log_requests=settings.log_requests,
        exclude_paths=settings.log_exclude_paths,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
    )

    register_exception_handlers(app)

    app.include_router(health_router)
    app.include_router(programs_router)
    app.include_router(enrollments_router)
    app.include_router(tasks_router)
    app.include_router(payments_router)
    app.include_router(certificates_router)
    app.include_router(notifications_router)

    @app.get("/", include_in_schema=False)
    async def root(request: Request) -> dict[str, str]:
        """Root endpoint."""
        return {
            "message": "InternHub API",
            "version": settings.app_version,
            "docs": f"{request.url}docs",
        }

    return app


app = create_app()
