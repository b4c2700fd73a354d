"""Audit helper shared by the booking and payment services."""

from courtly.extensions import db
from courtly.models.audit import AuditEvent


def log_audit(club_id, action, metadata=None, actor_user_id=None):
    """Add an audit event to the current transaction.

    Actor is None for webhook-driven (system-initiated) transitions.
    Uses flush() so the caller controls the commit boundary.
    """
    event = AuditEvent(
        club_id=club_id,
        actor_user_id=actor_user_id,
        action=action,
        metadata_=metadata or {},
    )
    db.session.add(event)
    db.session.flush()
    return event
