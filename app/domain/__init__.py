from app.domain.admin_log_operations import admin_log_ops
from app.domain.lyrics_approval_operations import lyrics_approval_ops
from app.domain.notification_queue_operations import notification_queue_ops
from app.domain.order_operations import order_ops
from app.domain.song_operations import song_ops

__all__ = [
    "admin_log_ops",
    "lyrics_approval_ops",
    "notification_queue_ops",
    "order_ops",
    "song_ops",
]
