from __future__ import annotations

from datetime import date, datetime, timedelta
import hashlib
from decimal import Decimal
from enum import Enum
from typing import Any

from flask import current_app, has_app_context
from flask_login import UserMixin
from sqlalchemy import event
from sqlalchemy.ext.declarative import declared_attr
from sqlalchemy.orm import Session, object_session
from werkzeug.security import check_password_hash, generate_password_hash

from .extensions import db
from .realtime import ChangeEvent
from .workflow import RecordStatus, RequestStatus

PENDING_CHANGES_KEY = "assetdesk.pending_changes"


def _enum_values(enum_cls: type[Enum]) -> list[str]:
    return [member.value for member in enum_cls]


def _to_json(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    return value


class BaseModel(db.Model):
    __abstract__ = True

    id = db.Column(db.Integer, primary_key=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(
        db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    @declared_attr  # type: ignore[misc]
    def __tablename__(cls) -> str:  # noqa: N805
        return cls.__name__.lower()

    def to_dict(self) -> dict[str, Any]:
        return {column.name: _to_json(getattr(self, column.name)) for column in self.__table__.columns}


class ProfileRole(str, Enum):
    ADMIN = "admin"
    USER = "user"


class AssetStatus(str, Enum):
    ACTIVE = "active"
    IN_MAINTENANCE = "in_maintenance"
    DEPRECIATED = "depreciated"


ASSET_STATUS_LABELS = {
    AssetStatus.ACTIVE.value: "Ativo",
    AssetStatus.IN_MAINTENANCE.value: "Em Manutenção",
    AssetStatus.DEPRECIATED.value: "Depreciado",
}


class PurchaseType(str, Enum):
    PRODUCT = "product"
    ASSET = "asset"


class TaskStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"


class NotificationType(str, Enum):
    INFO = "info"
    WARNING = "warning"
    SUCCESS = "success"
    ALERT = "alert"


class FieldType(str, Enum):
    TEXT = "text"
    TEXTAREA = "textarea"


class Department(BaseModel):
    __tablename__ = "departments"

    name = db.Column(db.String(120), nullable=False, unique=True)
    description = db.Column(db.Text)
    # Creator id without a foreign key; profiles already reference departments
    user_id = db.Column(db.Integer)

    members = db.relationship("Profile", back_populates="department", foreign_keys="Profile.department_id")


class Profile(UserMixin, BaseModel):
    __tablename__ = "profiles"

    email = db.Column(db.String(255), nullable=False, unique=True, index=True)
    password_hash = db.Column(db.String(255))
    first_name = db.Column(db.String(120))
    last_name = db.Column(db.String(120))
    avatar_url = db.Column(db.String(512))
    role = db.Column(
        db.Enum(ProfileRole, native_enum=False, values_callable=_enum_values),
        default=ProfileRole.USER,
        nullable=False,
    )
    department_id = db.Column(db.Integer, db.ForeignKey("departments.id", ondelete="SET NULL"))
    active = db.Column(db.Boolean, default=True, nullable=False)
    invited_at = db.Column(db.DateTime)
    invite_token_hash = db.Column(db.String(255))
    invite_token_expires_at = db.Column(db.DateTime)
    last_login_at = db.Column(db.DateTime)

    department = db.relationship("Department", back_populates="members", foreign_keys=[department_id])

    def set_password(self, password: str) -> None:
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        if not self.password_hash:
            return False
        return check_password_hash(self.password_hash, password)

    def issue_invite_token(self, raw_token: str, *, expires_in_hours: int) -> None:
        self.invited_at = datetime.utcnow()
        self.invite_token_hash = hashlib.sha256(raw_token.encode()).hexdigest()
        self.invite_token_expires_at = self.invited_at + timedelta(hours=expires_in_hours)

    def invite_token_is_valid(self, raw_token: str) -> bool:
        if not self.invite_token_hash or not self.invite_token_expires_at:
            return False
        token_hash = hashlib.sha256(raw_token.encode()).hexdigest()
        return self.invite_token_hash == token_hash and datetime.utcnow() <= self.invite_token_expires_at

    def clear_invite_token(self) -> None:
        self.invite_token_hash = None
        self.invite_token_expires_at = None

    @property
    def is_active(self) -> bool:  # type: ignore[override]
        return bool(self.active)

    @property
    def is_admin(self) -> bool:
        return self.role == ProfileRole.ADMIN

    @property
    def full_name(self) -> str:
        name = " ".join(part for part in (self.first_name, self.last_name) if part)
        return name or self.email

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "avatar_url": self.avatar_url,
            "role": _to_json(self.role),
            "department_id": self.department_id,
            "department_name": self.department.name if self.department else None,
            "invited": self.invited_at is not None and self.password_hash is None,
        }


class Supplier(BaseModel):
    __tablename__ = "suppliers"

    name = db.Column(db.String(255), nullable=False)
    contact_person = db.Column(db.String(255))
    email = db.Column(db.String(255))
    phone = db.Column(db.String(64))
    address = db.Column(db.String(512))
    notes = db.Column(db.Text)
    user_id = db.Column(db.Integer, db.ForeignKey("profiles.id", ondelete="SET NULL"))


class Asset(BaseModel):
    __tablename__ = "assets"

    name = db.Column(db.String(255), nullable=False)
    tag_code = db.Column(db.String(128), nullable=False, unique=True, index=True)
    description = db.Column(db.Text)
    acquisition_date = db.Column(db.Date)
    supplier = db.Column(db.String(255))
    value = db.Column(db.Float)
    useful_life_years = db.Column(db.Integer)
    status = db.Column(db.String(32), default=AssetStatus.ACTIVE.value, nullable=False, index=True)
    department_id = db.Column(db.Integer, db.ForeignKey("departments.id", ondelete="SET NULL"))
    custodian_id = db.Column(db.Integer, db.ForeignKey("profiles.id", ondelete="SET NULL"))
    user_id = db.Column(db.Integer, db.ForeignKey("profiles.id", ondelete="SET NULL"))

    department = db.relationship("Department", foreign_keys=[department_id])
    custodian = db.relationship("Profile", foreign_keys=[custodian_id])
    maintenance_records = db.relationship(
        "MaintenanceRecord",
        back_populates="asset",
        cascade="all, delete-orphan",
        order_by="MaintenanceRecord.scheduled_date.desc()",
    )
    purchases = db.relationship("Purchase", back_populates="asset")


class Purchase(BaseModel):
    """One row of the stock ledger; negative quantities are stock usage."""

    __tablename__ = "purchases"

    asset_id = db.Column(db.Integer, db.ForeignKey("assets.id", ondelete="SET NULL"), index=True)
    product_name = db.Column(db.String(255), index=True)
    quantity = db.Column(db.Float)
    vendor = db.Column(db.String(255))
    purchase_date = db.Column(db.Date)
    cost = db.Column(db.Float)
    invoice_number = db.Column(db.String(128))
    notes = db.Column(db.Text)
    purchase_type = db.Column(
        db.Enum(PurchaseType, native_enum=False, values_callable=_enum_values),
        default=PurchaseType.PRODUCT,
        nullable=False,
    )
    user_id = db.Column(db.Integer, db.ForeignKey("profiles.id", ondelete="SET NULL"))

    asset = db.relationship("Asset", back_populates="purchases")

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["assets"] = {"name": self.asset.name} if self.asset else None
        return payload


class MaintenanceRecord(BaseModel):
    __tablename__ = "maintenance_records"

    asset_id = db.Column(db.Integer, db.ForeignKey("assets.id", ondelete="CASCADE"), nullable=False, index=True)
    maintenance_type = db.Column(db.String(64), nullable=False)
    description = db.Column(db.Text)
    scheduled_date = db.Column(db.Date, nullable=False)
    completion_date = db.Column(db.Date)
    cost = db.Column(db.Float)
    status = db.Column(db.String(32), default=RecordStatus.SCHEDULED.value, nullable=False, index=True)
    notes = db.Column(db.Text)
    technician_name = db.Column(db.String(255))
    user_id = db.Column(db.Integer, db.ForeignKey("profiles.id", ondelete="SET NULL"))

    asset = db.relationship("Asset", back_populates="maintenance_records")
    products = db.relationship(
        "MaintenanceProduct",
        back_populates="maintenance_record",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["assets"] = {"name": self.asset.name, "tag_code": self.asset.tag_code} if self.asset else None
        payload["maintenance_products"] = [product.to_dict() for product in self.products]
        return payload


class MaintenanceProduct(BaseModel):
    __tablename__ = "maintenance_products"

    maintenance_record_id = db.Column(
        db.Integer, db.ForeignKey("maintenance_records.id", ondelete="CASCADE"), nullable=False, index=True
    )
    product_name = db.Column(db.String(255), nullable=False)
    quantity_used = db.Column(db.Float, nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("profiles.id", ondelete="SET NULL"))

    maintenance_record = db.relationship("MaintenanceRecord", back_populates="products")


class MaintenanceRequest(BaseModel):
    """A ticket opened through the public form; it has no owning user."""

    __tablename__ = "maintenance_requests"

    requester_name = db.Column(db.String(255), nullable=False)
    requester_email = db.Column(db.String(255), index=True)
    requester_phone = db.Column(db.String(64))
    description = db.Column(db.Text, nullable=False)
    custom_data = db.Column(db.JSON)
    status = db.Column(db.String(32), default=RequestStatus.NEW.value, nullable=False, index=True)
    technician_name = db.Column(db.String(255))
    started_at = db.Column(db.DateTime)
    completed_at = db.Column(db.DateTime)


class PublicFormField(BaseModel):
    __tablename__ = "public_form_fields"

    field_label = db.Column(db.String(120), nullable=False, unique=True)
    field_type = db.Column(
        db.Enum(FieldType, native_enum=False, values_callable=_enum_values),
        default=FieldType.TEXT,
        nullable=False,
    )
    is_required = db.Column(db.Boolean, default=False, nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("profiles.id", ondelete="SET NULL"))


class Task(BaseModel):
    __tablename__ = "tasks"

    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text)
    due_date = db.Column(db.Date)
    status = db.Column(
        db.Enum(TaskStatus, native_enum=False, values_callable=_enum_values),
        default=TaskStatus.PENDING,
        nullable=False,
    )
    completed_by = db.Column(db.String(255))
    completed_at = db.Column(db.DateTime)
    user_id = db.Column(db.Integer, db.ForeignKey("profiles.id", ondelete="SET NULL"))

    def complete(self, completed_by: str, when: datetime | None = None) -> None:
        self.status = TaskStatus.COMPLETED
        self.completed_at = when or datetime.utcnow()
        self.completed_by = self.completed_by or completed_by

    def reopen(self) -> None:
        self.status = TaskStatus.PENDING
        self.completed_at = None
        self.completed_by = None


class Notification(BaseModel):
    __tablename__ = "notifications"

    user_id = db.Column(db.Integer, db.ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True)
    title = db.Column(db.String(255), nullable=False)
    body = db.Column(db.Text, nullable=False)
    type = db.Column(
        db.Enum(NotificationType, native_enum=False, values_callable=_enum_values),
        default=NotificationType.INFO,
        nullable=False,
    )
    link = db.Column(db.String(512))
    read_at = db.Column(db.DateTime)


class CompanySettings(BaseModel):
    """Singleton row holding branding; always id 1."""

    __tablename__ = "company_settings"

    SINGLETON_ID = 1

    company_name = db.Column(db.String(255))
    logo_url = db.Column(db.String(512))
    favicon_url = db.Column(db.String(512))
    notification_sound_url = db.Column(db.String(512))


@event.listens_for(MaintenanceRecord, "before_insert")
@event.listens_for(MaintenanceRecord, "before_update")
def _record_completion_guard(mapper, connection, target):  # pragma: no cover - SQLAlchemy hook
    if target.status == RecordStatus.COMPLETED.value:
        if target.completion_date is None:
            target.completion_date = date.today()
    elif target.completion_date is not None:
        target.completion_date = None


@event.listens_for(CompanySettings, "before_insert")
def _company_settings_singleton(mapper, connection, target):  # pragma: no cover - SQLAlchemy hook
    target.id = CompanySettings.SINGLETON_ID


@event.listens_for(Notification, "after_insert")
def _stage_notification_insert(mapper, connection, target):  # pragma: no cover - SQLAlchemy hook
    session = object_session(target)
    if session is None:
        return
    change = ChangeEvent(table=Notification.__tablename__, event="INSERT", new=target.to_dict())
    session.info.setdefault(PENDING_CHANGES_KEY, []).append(change)


@event.listens_for(Session, "after_commit")
def _publish_committed_changes(session):  # pragma: no cover - SQLAlchemy hook
    changes = session.info.pop(PENDING_CHANGES_KEY, None)
    if not changes or not has_app_context():
        return
    feed = current_app.extensions.get("change_feed")
    if feed is None:
        return
    for change in changes:
        feed.publish(change)


@event.listens_for(Session, "after_rollback")
def _discard_uncommitted_changes(session):  # pragma: no cover - SQLAlchemy hook
    session.info.pop(PENDING_CHANGES_KEY, None)
