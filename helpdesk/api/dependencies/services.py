from __future__ import annotations

from fastapi import Depends, Request

from helpdesk.api.dependencies.database import require_database
from helpdesk.core.config import Settings, get_settings
from helpdesk.core.database import Database
from helpdesk.repositories.audit_logs import ActivityLogRepository
from helpdesk.repositories.auth import SessionRepository
from helpdesk.repositories.companies import CompanyRepository
from helpdesk.repositories.mail_settings import MailSettingsRepository
from helpdesk.repositories.tickets import TicketRepository
from helpdesk.repositories.users import UserRepository
from helpdesk.services.audit import ActivityLogger
from helpdesk.services.auth import AuthService
from helpdesk.services.companies import CompanyService
from helpdesk.services.imap import MailIngestionService
from helpdesk.services.tickets import TicketService
from helpdesk.services.users import UserService


def get_app_settings(request: Request) -> Settings:
    return getattr(request.app.state, "settings", None) or get_settings()


def get_activity_logger(
    request: Request,
    database: Database = Depends(require_database),
) -> ActivityLogger:
    activity = getattr(request.app.state, "activity_logger", None)
    if activity is None:
        activity = ActivityLogger(ActivityLogRepository(database))
        request.app.state.activity_logger = activity
    return activity


def get_auth_service(
    database: Database = Depends(require_database),
    activity: ActivityLogger = Depends(get_activity_logger),
    settings: Settings = Depends(get_app_settings),
) -> AuthService:
    return AuthService(
        UserRepository(database),
        SessionRepository(database),
        activity,
        settings,
    )


def get_user_service(
    database: Database = Depends(require_database),
    activity: ActivityLogger = Depends(get_activity_logger),
    settings: Settings = Depends(get_app_settings),
) -> UserService:
    return UserService(
        UserRepository(database),
        SessionRepository(database),
        CompanyRepository(database),
        activity,
        settings,
    )


def get_company_service(
    database: Database = Depends(require_database),
    activity: ActivityLogger = Depends(get_activity_logger),
) -> CompanyService:
    return CompanyService(CompanyRepository(database), activity)


def get_ticket_service(
    database: Database = Depends(require_database),
    activity: ActivityLogger = Depends(get_activity_logger),
    settings: Settings = Depends(get_app_settings),
) -> TicketService:
    return TicketService(TicketRepository(database), activity, settings)


def get_mail_service(
    request: Request,
    database: Database = Depends(require_database),
    tickets: TicketService = Depends(get_ticket_service),
    companies: CompanyService = Depends(get_company_service),
    activity: ActivityLogger = Depends(get_activity_logger),
    settings: Settings = Depends(get_app_settings),
) -> MailIngestionService:
    return MailIngestionService(
        tickets,
        MailSettingsRepository(database),
        companies,
        activity,
        settings,
        mailbox_factory=getattr(request.app.state, "mailbox_factory", None),
    )
