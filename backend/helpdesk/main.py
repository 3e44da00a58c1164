import asyncio
import contextlib
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from helpdesk.api.middleware import RateLimitMiddleware, RequestLoggingMiddleware
from helpdesk.api.routes import (
    api_keys,
    auth,
    contacts,
    dashboard,
    email_templates,
    exports,
    imports,
    notifications,
    organization,
    roles,
    scheduler,
    scheduler_admin,
    sla_rules,
    teams,
    tickets,
    users,
)
from helpdesk.config import settings
from helpdesk.database import async_session
from helpdesk.tasks.appointment_reminders import send_appointment_reminders
from helpdesk.tasks.export_cleanup import cleanup_expired_exports
from helpdesk.tasks.queue import requeue_pending_jobs, task_queue
from helpdesk.tasks.sla_checker import check_sla_breaches
from helpdesk.tasks.snooze_evaluator import wake_snoozed_tickets

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


@contextlib.asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.jwt_secret == "change-me-in-production":
        logger.warning(
            "JWT_SECRET is set to the default value. "
            "This is insecure; set a strong secret in your .env file."
        )

    periodic: list[asyncio.Task] = []
    if settings.run_background_jobs:
        task_queue.start(settings.background_workers)
        await requeue_pending_jobs(async_session)
        periodic = [
            asyncio.create_task(check_sla_breaches()),
            asyncio.create_task(cleanup_expired_exports()),
            asyncio.create_task(send_appointment_reminders()),
            asyncio.create_task(wake_snoozed_tickets()),
        ]
    try:
        yield
    finally:
        for task in periodic:
            task.cancel()
        await asyncio.gather(*periodic, return_exceptions=True)
        if settings.run_background_jobs:
            await task_queue.stop()


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title="Helpdesk", version="0.1.0", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_middleware(RateLimitMiddleware)
    app.add_middleware(RequestLoggingMiddleware)

    @app.get("/api/v1/health")
    async def health_check():
        return {"status": "ok"}

    app.include_router(organization.setup_router, prefix="/api/v1/setup", tags=["setup"])
    app.include_router(organization.router, prefix="/api/v1/organization", tags=["organization"])
    app.include_router(auth.router, prefix="/api/v1/auth", tags=["auth"])
    app.include_router(api_keys.router, prefix="/api/v1/api-keys", tags=["api-keys"])
    app.include_router(users.router, prefix="/api/v1/users", tags=["users"])
    app.include_router(roles.router, prefix="/api/v1/roles", tags=["roles"])
    app.include_router(teams.router, prefix="/api/v1/teams", tags=["teams"])
    app.include_router(contacts.router, prefix="/api/v1/contacts", tags=["contacts"])
    app.include_router(tickets.router, prefix="/api/v1/tickets", tags=["tickets"])
    app.include_router(sla_rules.router, prefix="/api/v1/sla-rules", tags=["sla-rules"])
    app.include_router(imports.router, prefix="/api/v1/imports", tags=["imports"])
    app.include_router(exports.router, prefix="/api/v1/exports", tags=["exports"])
    app.include_router(notifications.router, prefix="/api/v1/notifications", tags=["notifications"])
    app.include_router(scheduler.router, prefix="/api/v1/scheduler", tags=["scheduler"])
    app.include_router(scheduler_admin.router, prefix="/api/v1/scheduler-admin", tags=["scheduler-admin"])
    app.include_router(dashboard.router, prefix="/api/v1/dashboard", tags=["dashboard"])
    app.include_router(email_templates.router, prefix="/api/v1/email-templates", tags=["email-templates"])

    return app


app = create_app()
