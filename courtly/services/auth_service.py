"""Auth service — API bearer tokens and club-level authorization.

Tokens are HS256 JWTs signed with SECRET_KEY whose `sub` is the user id.
Flask-Login's request_loader calls user_from_authorization_header() on
every request, so `current_user` works the same for every API route.
"""

import logging
from datetime import datetime, timedelta, timezone

import jwt
from flask import current_app

from courtly.errors import ForbiddenError, NotFoundError
from courtly.extensions import db
from courtly.models.club import Club, ClubMember
from courtly.models.user import User

logger = logging.getLogger(__name__)


def issue_api_token(user):
    """Sign a bearer token for `user`."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user.id,
        "iat": now,
        "exp": now + timedelta(seconds=current_app.config["API_TOKEN_TTL_SECONDS"]),
    }
    return jwt.encode(
        payload,
        current_app.config["SECRET_KEY"],
        algorithm=current_app.config["JWT_ALGORITHM"],
    )


def verify_api_token(token):
    """Return the user id a token was issued for, or None if invalid/expired."""
    try:
        payload = jwt.decode(
            token,
            current_app.config["SECRET_KEY"],
            algorithms=[current_app.config["JWT_ALGORITHM"]],
        )
    except jwt.ExpiredSignatureError:
        logger.info("Rejected expired API token")
        return None
    except jwt.InvalidTokenError as e:
        logger.warning(f"Rejected invalid API token: {e}")
        return None
    return payload.get("sub")


def user_from_authorization_header(header):
    """Resolve an `Authorization: Bearer <token>` header to an active user."""
    if not header or not header.startswith("Bearer "):
        return None
    token = header[len("Bearer "):].strip()
    if not token:
        return None

    user_id = verify_api_token(token)
    if not user_id:
        return None

    user = db.session.get(User, user_id)
    if user is None or not user.is_active:
        return None
    return user


def get_club_or_404(club_id):
    club = db.session.get(Club, club_id)
    if club is None:
        raise NotFoundError("Club not found")
    return club


def get_membership(user, club_id):
    return ClubMember.query.filter_by(user_id=user.id, club_id=club_id).first()


def is_club_admin(user, club_id):
    """Platform admins administer every club; otherwise owner/admin role."""
    if user.is_admin:
        return True
    membership = get_membership(user, club_id)
    return membership is not None and membership.is_club_admin


def require_club_admin(user, club_id):
    if not is_club_admin(user, club_id):
        raise ForbiddenError("Unauthorized: Must be club admin")


def require_club_access(user, club_id):
    """Members and admins of the club may book and pay there."""
    if user.is_admin or get_membership(user, club_id) is not None:
        return
    raise ForbiddenError("You are not a member of this club")
