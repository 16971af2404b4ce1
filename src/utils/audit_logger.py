"""
Audit logging for sensitive workspace and task operations.

Tracks: ownership changes, member removal, workspace archive, task reassignment.
Entries are emitted on this module's logger with an ``AUDIT:`` prefix and
an ``audit`` flag in the record extras.
"""

import logging
from typing import Optional, Dict, Any
from enum import Enum

logger = logging.getLogger(__name__)


class AuditAction(str, Enum):
    """Types of auditable actions."""
    # Workspace administration
    WORKSPACE_OWNER_SET = "workspace_owner_set"
    WORKSPACE_ARCHIVE = "workspace_archive"
    INVITE_CREATE = "invite_create"

    # Membership
    MEMBER_REMOVE = "member_remove"

    # Task operations
    TASK_REASSIGN = "task_reassign"


class AuditLevel(str, Enum):
    """Severity levels for audit events."""
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


def log_audit_event(
    action: AuditAction,
    user_id: Optional[str] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    level: AuditLevel = AuditLevel.INFO,
) -> bool:
    """
    Log an audit event to the system logs.

    Args:
        action: Type of action performed
        user_id: ID of user performing action
        entity_type: Type of entity affected (task, workspace, member)
        entity_id: ID of affected entity
        details: Additional context (changes, reasons, etc.)
        level: Severity level

    Returns:
        True if logged successfully
    """
    try:
        log_message = f"AUDIT: {action.value} by {user_id or 'system'}"
        if entity_type and entity_id:
            log_message += f" on {entity_type}:{entity_id}"

        extra = {"audit": True, "details": details or {}}
        if level == AuditLevel.CRITICAL:
            logger.critical(log_message, extra=extra)
        elif level == AuditLevel.WARNING:
            logger.warning(log_message, extra=extra)
        else:
            logger.info(log_message, extra=extra)

        return True

    except Exception as e:
        # Never fail the operation due to audit logging failure
        logger.error(f"Failed to log audit event: {e}")
        return False
