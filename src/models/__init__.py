"""ORM models package.

Import all models here so that SQLAlchemy's metadata is fully populated
when Alembic runs autogenerate. The order of imports matters for foreign
key resolution.
"""

from src.models.user import Role, User
from src.models.application import Application, QuestionnaireVote, UserAppRelation
from src.models.audit import AuditLog, AuditStatus
from src.models.consent import Consent, ConsentAction, ConsentEvent
from src.models.gdpr_request import GDPRRequestRecord, RequestStatus, RequestType
from src.models.message import Message
from src.models.notification import Notification, NotificationKind
from src.models.privacy_notice import PrivacyNotice

__all__ = [
    "Role",
    "User",
    "Application",
    "QuestionnaireVote",
    "UserAppRelation",
    "AuditLog",
    "AuditStatus",
    "Consent",
    "ConsentAction",
    "ConsentEvent",
    "GDPRRequestRecord",
    "RequestStatus",
    "RequestType",
    "Message",
    "Notification",
    "NotificationKind",
    "PrivacyNotice",
]
