from __future__ import annotations

from functools import wraps
from typing import Callable, Type, TypeVar

from flask import abort, g, jsonify, redirect, request
from flask_login import current_user

from .extensions import db
from .models import Profile, ProfileRole

T = TypeVar("T")

LOGIN_PATH = "/login"
PUBLIC_PATHS: tuple[str, ...] = (LOGIN_PATH, "/solicitar-manutencao", "/health")
# Static buckets and bundled sounds are readable without a session
PUBLIC_PREFIXES: tuple[str, ...] = ("/storage/", "/sounds/", "/static/")


def is_public_path(path: str) -> bool:
    normalized = path.rstrip("/") or "/"
    if any(normalized == public or normalized.startswith(public + "/") for public in PUBLIC_PATHS):
        return True
    return path.startswith(PUBLIC_PREFIXES)


def get_current_user() -> Profile | None:
    if current_user and current_user.is_authenticated:
        g.current_user = current_user
        return current_user
    return None


def unauthenticated_response():
    """401 for API callers, redirect to the login page for everything else."""
    if request.path.startswith("/api/") or request.is_json or request.accept_mimetypes.best == "application/json":
        return jsonify({"message": "Authentication required", "redirect": LOGIN_PATH}), 401
    return redirect(LOGIN_PATH)


def enforce_session():
    """Request guard: only the public paths are reachable without a session."""
    if request.method == "OPTIONS" or is_public_path(request.path):
        return None
    if get_current_user() is None:
        return unauthenticated_response()
    return None


def owner_query(model: Type[db.Model]):
    """Rows of ``model`` that belong to the signed-in profile."""
    user = get_current_user()
    if not user:
        abort(401, description="Authentication required")
    if not hasattr(model, "user_id"):
        raise ValueError("Model is not owner-scoped: user_id missing")
    return model.query.filter_by(user_id=user.id)


def enforce_owner(record: db.Model) -> None:
    if record is None:
        abort(404, description="Resource not found")
    user = get_current_user()
    if not user:
        abort(401, description="Authentication required")
    if getattr(record, "user_id", None) != user.id:
        abort(404, description="Resource not found")


def role_required(role: ProfileRole) -> Callable[[Callable[..., T]], Callable[..., T]]:
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args, **kwargs):
            user = get_current_user()
            if not user:
                abort(401, description="Authentication required")
            if user.role != role:
                abort(403, description="Insufficient permissions")
            return func(*args, **kwargs)

        return wrapper

    return decorator


admin_required = role_required(ProfileRole.ADMIN)


def admin_user_ids() -> list[int]:
    rows = db.session.query(Profile.id).filter(Profile.role == ProfileRole.ADMIN).order_by(Profile.id.asc()).all()
    return [row[0] for row in rows]


def bootstrap_admin(email: str | None, password: str | None) -> Profile | None:
    """Create the first administrator when the profiles table is empty."""
    if not email or not password:
        return None
    if db.session.query(Profile.id).first() is not None:
        return None
    admin = Profile(email=email.strip().lower(), role=ProfileRole.ADMIN, first_name="Admin")
    admin.set_password(password)
    db.session.add(admin)
    db.session.commit()
    return admin
