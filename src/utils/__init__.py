"""Utility modules for the task review core."""

from .datetime_utils import (
    Clock,
    SystemClock,
    get_local_tz,
    get_local_now,
    end_of_day,
    end_of_next_day,
    parse_date_input,
)
from .tokens import (
    new_id,
    new_draft_token,
    new_invite_token,
    new_dm_source_message_id,
)
from .audit_logger import AuditAction, AuditLevel, log_audit_event

__all__ = [
    "Clock",
    "SystemClock",
    "get_local_tz",
    "get_local_now",
    "end_of_day",
    "end_of_next_day",
    "parse_date_input",
    "new_id",
    "new_draft_token",
    "new_invite_token",
    "new_dm_source_message_id",
    "AuditAction",
    "AuditLevel",
    "log_audit_event",
]
