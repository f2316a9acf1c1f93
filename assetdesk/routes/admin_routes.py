from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required
from sqlalchemy.exc import IntegrityError

from assetdesk.access import admin_required, enforce_owner, owner_query
from assetdesk.cache import get_query_cache
from assetdesk.extensions import db
from assetdesk.forms import (
    CompanySettingsForm,
    DepartmentForm,
    ProfileForm,
    TaskForm,
    form_errors,
    json_formdata,
)
from assetdesk.models import CompanySettings, Department, Profile, Task, TaskStatus
from assetdesk.storage import StorageError, get_storage

admin_bp = Blueprint("admin", __name__, url_prefix="/api")

# Upload kind -> (bucket, object name prefix, settings column)
SETTINGS_UPLOADS = {
    "logo": ("company_assets", "logo", "logo_url"),
    "favicon": ("company_assets", "favicon", "favicon_url"),
    "sound": ("company_assets", "notification-sound", "notification_sound_url"),
}


def _invalid(form):
    return jsonify({"message": "Please review the highlighted fields.", "errors": form_errors(form)}), 400


# Departments


@admin_bp.route("/departments", methods=["GET"])
@login_required
def list_departments():
    departments = Department.query.order_by(Department.name.asc()).all()
    return jsonify([department.to_dict() for department in departments])


@admin_bp.route("/departments", methods=["POST"])
@login_required
@admin_required
def create_department():
    form = DepartmentForm(formdata=json_formdata())
    if not form.validate():
        return _invalid(form)
    department = Department(
        name=form.name.data.strip(),
        description=form.description.data or None,
        user_id=current_user.id,
    )
    db.session.add(department)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return jsonify({"message": "A department with this name already exists."}), 400
    return jsonify(department.to_dict()), 201


@admin_bp.route("/departments/<int:department_id>", methods=["PUT", "PATCH"])
@login_required
@admin_required
def update_department(department_id: int):
    department = db.get_or_404(Department, department_id, description="Department not found")
    body = request.get_json(silent=True) or {}
    form = DepartmentForm(formdata=json_formdata({**department.to_dict(), **body}))
    if not form.validate():
        return _invalid(form)
    department.name = form.name.data.strip()
    department.description = form.description.data or None
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return jsonify({"message": "A department with this name already exists."}), 400
    get_query_cache().invalidate("dashboard")
    return jsonify(department.to_dict())


@admin_bp.route("/departments/<int:department_id>", methods=["DELETE"])
@login_required
@admin_required
def delete_department(department_id: int):
    department = db.get_or_404(Department, department_id, description="Department not found")
    for member in department.members:
        member.department_id = None
    db.session.delete(department)
    db.session.commit()
    get_query_cache().invalidate("dashboard")
    return jsonify({"message": "Department deleted.", "id": department_id})


# Profiles


@admin_bp.route("/profiles", methods=["GET"])
@login_required
def list_profiles():
    profiles = Profile.query.order_by(Profile.first_name.asc(), Profile.email.asc()).all()
    return jsonify([profile.to_dict() for profile in profiles])


@admin_bp.route("/profiles/<int:profile_id>/department", methods=["PUT"])
@login_required
@admin_required
def assign_department(profile_id: int):
    profile = db.get_or_404(Profile, profile_id, description="Profile not found")
    body = request.get_json(silent=True) or {}
    department_id = body.get("department_id")
    if department_id not in (None, ""):
        try:
            department_id = int(department_id)
        except (TypeError, ValueError):
            return jsonify({"message": "Invalid department."}), 400
        if db.session.get(Department, department_id) is None:
            return jsonify({"message": "Department not found."}), 400
    else:
        department_id = None
    profile.department_id = department_id
    db.session.commit()
    return jsonify(profile.to_dict())


@admin_bp.route("/profile", methods=["GET"])
@login_required
def own_profile():
    return jsonify(current_user.to_dict())


@admin_bp.route("/profile", methods=["PUT", "PATCH"])
@login_required
def update_own_profile():
    body = request.get_json(silent=True) or {}
    form = ProfileForm(formdata=json_formdata({**current_user.to_dict(), **body}))
    if not form.validate():
        return _invalid(form)
    current_user.first_name = form.first_name.data or None
    current_user.last_name = form.last_name.data or None
    current_user.avatar_url = form.avatar_url.data or None
    db.session.commit()
    return jsonify(current_user.to_dict())


@admin_bp.route("/profile/avatar", methods=["POST"])
@login_required
def upload_avatar():
    storage = get_storage()
    try:
        object_path = storage.upload("avatars", request.files.get("file"), prefix=f"user-{current_user.id}")
    except StorageError as exc:
        return jsonify({"message": str(exc)}), 400
    current_user.avatar_url = storage.public_url("avatars", object_path)
    db.session.commit()
    return jsonify({"url": current_user.avatar_url, "profile": current_user.to_dict()})


# Company settings


@admin_bp.route("/settings", methods=["GET"])
@login_required
def get_settings():
    settings = db.session.get(CompanySettings, CompanySettings.SINGLETON_ID)
    return jsonify(settings.to_dict() if settings else None)


def _apply_settings_form(settings: CompanySettings, form: CompanySettingsForm) -> None:
    for name in ("company_name", "logo_url", "favicon_url", "notification_sound_url"):
        setattr(settings, name, getattr(form, name).data or None)


@admin_bp.route("/settings", methods=["POST"])
@login_required
@admin_required
def create_settings():
    if db.session.get(CompanySettings, CompanySettings.SINGLETON_ID) is not None:
        return jsonify({"message": "Company settings already exist."}), 400
    form = CompanySettingsForm(formdata=json_formdata())
    if not form.validate():
        return _invalid(form)
    settings = CompanySettings()
    _apply_settings_form(settings, form)
    db.session.add(settings)
    db.session.commit()
    return jsonify(settings.to_dict()), 201


@admin_bp.route("/settings", methods=["PUT", "PATCH"])
@login_required
@admin_required
def update_settings():
    settings = db.get_or_404(CompanySettings, CompanySettings.SINGLETON_ID, description="Company settings not found")
    body = request.get_json(silent=True) or {}
    form = CompanySettingsForm(formdata=json_formdata({**settings.to_dict(), **body}))
    if not form.validate():
        return _invalid(form)
    _apply_settings_form(settings, form)
    db.session.commit()
    return jsonify(settings.to_dict())


@admin_bp.route("/settings/<kind>", methods=["POST"])
@login_required
@admin_required
def upload_settings_file(kind: str):
    """Store a logo, favicon or notification sound and point the settings row at it."""
    if kind not in SETTINGS_UPLOADS:
        return jsonify({"message": f"Unknown upload kind: {kind}"}), 404
    bucket, prefix, column = SETTINGS_UPLOADS[kind]
    storage = get_storage()
    try:
        object_path = storage.upload(bucket, request.files.get("file"), prefix=prefix)
    except StorageError as exc:
        return jsonify({"message": str(exc)}), 400

    url = storage.public_url(bucket, object_path)
    settings = db.session.get(CompanySettings, CompanySettings.SINGLETON_ID)
    if settings is None:
        settings = CompanySettings()
        db.session.add(settings)
    setattr(settings, column, url)
    db.session.commit()
    current_app.logger.info("Company %s updated to %s", kind, url)
    return jsonify({"url": url, "settings": settings.to_dict()})


# Tasks


def _apply_task_form(task: Task, form: TaskForm) -> None:
    task.title = form.title.data.strip()
    task.description = form.description.data or None
    task.due_date = form.due_date.data
    status = TaskStatus(form.status.data or TaskStatus.PENDING.value)
    if status == TaskStatus.COMPLETED and task.status != TaskStatus.COMPLETED:
        task.complete(current_user.full_name)
    elif status == TaskStatus.PENDING and task.status == TaskStatus.COMPLETED:
        task.reopen()
    else:
        task.status = status


@admin_bp.route("/tasks", methods=["GET"])
@login_required
def list_tasks():
    tasks = owner_query(Task).order_by(Task.created_at.desc(), Task.id.desc()).all()
    return jsonify([task.to_dict() for task in tasks])


@admin_bp.route("/tasks", methods=["POST"])
@login_required
def create_task():
    form = TaskForm(formdata=json_formdata())
    if not form.validate():
        return _invalid(form)
    task = Task(user_id=current_user.id, status=TaskStatus.PENDING)
    _apply_task_form(task, form)
    db.session.add(task)
    db.session.commit()
    get_query_cache().invalidate("dashboard")
    return jsonify(task.to_dict()), 201


@admin_bp.route("/tasks/<int:task_id>", methods=["PUT", "PATCH"])
@login_required
def update_task(task_id: int):
    task = db.session.get(Task, task_id)
    enforce_owner(task)
    body = request.get_json(silent=True) or {}
    form = TaskForm(formdata=json_formdata({**task.to_dict(), **body}))
    if not form.validate():
        return _invalid(form)
    _apply_task_form(task, form)
    db.session.commit()
    get_query_cache().invalidate("dashboard")
    return jsonify(task.to_dict())


@admin_bp.route("/tasks/<int:task_id>/complete", methods=["POST"])
@login_required
def complete_task(task_id: int):
    task = db.session.get(Task, task_id)
    enforce_owner(task)
    task.complete(current_user.full_name)
    db.session.commit()
    get_query_cache().invalidate("dashboard")
    return jsonify(task.to_dict())


@admin_bp.route("/tasks/<int:task_id>/reopen", methods=["POST"])
@login_required
def reopen_task(task_id: int):
    task = db.session.get(Task, task_id)
    enforce_owner(task)
    task.reopen()
    db.session.commit()
    get_query_cache().invalidate("dashboard")
    return jsonify(task.to_dict())


@admin_bp.route("/tasks/<int:task_id>", methods=["DELETE"])
@login_required
def delete_task(task_id: int):
    task = db.session.get(Task, task_id)
    enforce_owner(task)
    db.session.delete(task)
    db.session.commit()
    get_query_cache().invalidate("dashboard")
    return jsonify({"message": "Task deleted.", "id": task_id})
