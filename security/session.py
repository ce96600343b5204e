"""
Resolves the caller's auth session. Tokens are issued by the account service
that owns login; this service only stores and checks their SHA-256 hashes.
"""
import hashlib
from datetime import datetime
from flask import request, current_app

from models.auth_session import AuthSession

def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()

def _raw_token_from_request():
    auth = request.headers.get("Authorization", "")
    if auth.startswith("Bearer "):
        return auth[len("Bearer "):].strip() or None
    cookie_name = current_app.config.get("AUTH_COOKIE_NAME", "tutorslot_session")
    return request.cookies.get(cookie_name)

def get_session_from_request():
    raw_token = _raw_token_from_request()
    if not raw_token:
        return None

    sess = (
        AuthSession.query
        .filter_by(token_hash=hash_token(raw_token), revoked=False)
        .first()
    )
    if not sess or sess.expires_at <= datetime.utcnow():
        return None
    return sess
