from flask import g

from models import db
from models.user import User
from security.session import get_session_from_request


def load_current_user():
    """Resolve the bearer token or session cookie to ``g.user`` (None when anonymous)."""
    g.user = None
    g.session = get_session_from_request()
    if g.session is not None:
        g.user = db.session.get(User, g.session.user_id)
