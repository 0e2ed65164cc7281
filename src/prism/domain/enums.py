"""Domain enumerations for PRISM.

All enums use the (str, Enum) pattern to ensure JSON serialization compatibility.
"""

from enum import Enum


class UserRole(str, Enum):
    """Role of a platform user. Agency roles are AOPR staff."""

    AGENCY_ADMIN = "agency_admin"
    AGENCY_MEMBER = "agency_member"
    CLIENT_OWNER = "client_owner"
    CLIENT_TEAM = "client_team"


AGENCY_ROLES = frozenset({UserRole.AGENCY_ADMIN, UserRole.AGENCY_MEMBER})
CLIENT_ROLES = frozenset({UserRole.CLIENT_OWNER, UserRole.CLIENT_TEAM})


class ClientStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    PAUSED = "paused"


class MediaType(str, Enum):
    """Kind of media placement an opportunity offers."""

    FEATURE_ARTICLE = "feature_article"
    NEWS_BRIEF = "news_brief"
    PANEL = "panel"
    PODCAST = "podcast"
    TV_APPEARANCE = "tv_appearance"
    SPEAKING_ENGAGEMENT = "speaking_engagement"
    EVENT = "event"
    OTHER = "other"


class OpportunityStatus(str, Enum):
    """Lifecycle status of an opportunity. Opportunities are never deleted."""

    ACTIVE = "active"
    CLOSED = "closed"
    PAUSED = "paused"
    EXPIRED = "expired"


class Visibility(str, Enum):
    INTERNAL_ONLY = "internal_only"
    SHARED_WITH_CLIENTS = "shared_with_clients"


class ResponseState(str, Enum):
    """A client's stance on an assigned opportunity."""

    PENDING = "pending"
    INTERESTED = "interested"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    NO_RESPONSE = "no_response"


class RestoreRequestStatus(str, Enum):
    """Status of a client's request to reopen a declined opportunity."""

    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TaskType(str, Enum):
    BRIEFING = "briefing"
    MEDIA_TRAINING = "media_training"
    ASSET_COLLECTION = "asset_collection"
    SCHEDULING = "scheduling"
    FOLLOW_UP = "follow_up"
    OTHER = "other"


class TaskPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"


class ChatMessageType(str, Enum):
    """Kind of entry in a Q&A thread."""

    CLIENT_QUESTION = "client_question"
    AI_RESPONSE = "ai_response"
    AOPR_RESPONSE = "aopr_response"
    SYSTEM_MESSAGE = "system_message"


class ChatSenderType(str, Enum):
    CLIENT = "client"
    AI_BOT = "ai_bot"
    AOPR_REP = "aopr_rep"
    SYSTEM = "system"


class EventType(str, Enum):
    """Real-time event types pushed to connected parties."""

    STATUS_UPDATED = "status:updated"
    RESTORE_REQUEST = "restore:request"
    RESTORE_RESPONSE = "restore:response"
    CHAT_MESSAGE = "chat:message"
    CHAT_ESCALATED = "chat:escalated"
