from app.models.admin_log import AdminLog
from app.models.job import ACTIVE_JOB_STATUSES, TERMINAL_JOB_STATUSES, Job, JobStatus
from app.models.lyrics_approval import (
    ApprovalStatus,
    LyricsApproval,
    LyricsApprovalRead,
    VoicePreference,
)
from app.models.notification_queue import (
    NotificationQueueEntry,
    NotificationStatus,
    NotificationTemplate,
)
from app.models.order import Order, OrderStatus, Quiz
from app.models.rate_limit import RateLimitWindow
from app.models.song import Song, SongStatus

__all__ = [
    "ACTIVE_JOB_STATUSES",
    "TERMINAL_JOB_STATUSES",
    "AdminLog",
    "ApprovalStatus",
    "Job",
    "JobStatus",
    "LyricsApproval",
    "LyricsApprovalRead",
    "NotificationQueueEntry",
    "NotificationStatus",
    "NotificationTemplate",
    "Order",
    "OrderStatus",
    "Quiz",
    "RateLimitWindow",
    "Song",
    "SongStatus",
    "VoicePreference",
]
