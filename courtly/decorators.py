"""
Custom route decorators for access control.

- club_access_required: ensures user is logged in AND is a member (or admin)
  of the club named by the `club_id` URL parameter.
- club_admin_required: ensures user is logged in AND is an owner/admin of
  that club, or a platform admin.

Failures raise ForbiddenError / NotFoundError, rendered as JSON by the
app-level error handler.
"""

from functools import wraps

from flask_login import current_user, login_required

from courtly.services.auth_service import (
    get_club_or_404,
    require_club_access,
    require_club_admin,
)


def club_access_required(f):
    """Require login + membership of the club in the URL."""

    @wraps(f)
    @login_required
    def decorated(*args, **kwargs):
        club = get_club_or_404(kwargs.get("club_id"))
        require_club_access(current_user, club.id)
        return f(*args, **kwargs)

    return decorated


def club_admin_required(f):
    """Require login + owner/admin role in the club in the URL."""

    @wraps(f)
    @login_required
    def decorated(*args, **kwargs):
        club = get_club_or_404(kwargs.get("club_id"))
        require_club_admin(current_user, club.id)
        return f(*args, **kwargs)

    return decorated
