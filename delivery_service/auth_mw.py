from functools import wraps

import jwt
from flask import current_app, g, jsonify, request

from .models import Role
from .services.users import ensure_user

GATEWAY = "gateway"


def decode_token(token: str) -> dict:
    cfg = current_app.config
    return jwt.decode(token, cfg["JWT_SECRET"], algorithms=[cfg["JWT_ALGO"]])


def issue_token(subject: str, role: str, **claims) -> str:
    cfg = current_app.config
    return jwt.encode({"sub": subject, "role": role, **claims}, cfg["JWT_SECRET"], algorithm=cfg["JWT_ALGO"])


def require_role(*roles):
    """Bearer-token guard. Sets ``g.user`` (provisioned on first sight) and ``g.role``.

    The payment gateway authenticates with role ``gateway`` and has no user row.
    """
    allowed = {getattr(r, "value", r) for r in roles}

    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            auth = request.headers.get("Authorization", "")
            if not auth.startswith("Bearer "):
                return jsonify({"error": "missing_token"}), 401
            token = auth.split(" ", 1)[1]
            try:
                payload = decode_token(token)
            except jwt.PyJWTError:
                return jsonify({"error": "invalid_token"}), 401

            role, subject = payload.get("role"), payload.get("sub")
            if not subject or role not in allowed:
                return jsonify({"error": "forbidden_role"}), 403

            g.role = role
            if role == GATEWAY:
                g.user = None
            else:
                user = ensure_user(str(subject), Role(role), payload.get("name"))
                if user.role.value != role:
                    return jsonify({"error": "role_mismatch"}), 403
                g.user = user
            return func(*args, **kwargs)

        return wrapper

    return decorator
