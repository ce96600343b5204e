from flask import request, jsonify

CSRF_COOKIE = "csrf_token"
CSRF_HEADER = "X-CSRF-Token"

def uses_cookie_auth() -> bool:
    # bearer-token callers cannot be driven by a cross-site form post
    return not request.headers.get("Authorization", "").startswith("Bearer ")

def require_csrf():
    cookie_token = request.cookies.get(CSRF_COOKIE)
    header_token = request.headers.get(CSRF_HEADER)
    if not cookie_token or not header_token or cookie_token != header_token:
        return jsonify(error="CSRF validation failed"), 403
    return None
