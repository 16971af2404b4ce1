"""Identifier and token generation."""

import secrets
import uuid


def new_id() -> str:
    """Primary key for new rows."""
    return str(uuid.uuid4())


def new_draft_token() -> str:
    """Deep-link safe token addressing a draft (fits in a /start payload)."""
    return secrets.token_urlsafe(12)


def new_invite_token() -> str:
    return secrets.token_urlsafe(16)


def new_dm_source_message_id() -> str:
    """Synthetic source message id for drafts started in a private chat."""
    return f"dm-{uuid.uuid4().hex[:16]}"
