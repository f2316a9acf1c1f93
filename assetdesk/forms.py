from __future__ import annotations

from typing import Any, Iterable, Mapping

from flask import request
from flask_wtf import FlaskForm
from werkzeug.datastructures import MultiDict
from wtforms import BooleanField, FloatField, IntegerField, PasswordField, StringField, TextAreaField
from wtforms.fields import DateField
from wtforms.validators import AnyOf, DataRequired, Email, Length, NumberRange, Optional, ValidationError

from .models import AssetStatus, FieldType, NotificationType, PurchaseType, TaskStatus
from .workflow import RECORD_STATUSES, REQUEST_STATUSES

DATE_FORMATS = ["%Y-%m-%d", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%dT%H:%M:%S.%f", "%Y-%m-%dT%H:%M:%SZ"]


def json_formdata(payload: Mapping[str, Any] | None = None) -> MultiDict:
    """Flatten a JSON body into form data; nested values and nulls are left out."""
    if payload is None:
        payload = request.get_json(silent=True) or {}
    data = MultiDict()
    for key, value in payload.items():
        if value is None or isinstance(value, (dict, list)):
            continue
        if isinstance(value, bool):
            value = "y" if value else ""
        data.add(key, str(value))
    return data


def form_errors(form: FlaskForm) -> dict[str, list[str]]:
    return {name: list(errors) for name, errors in form.errors.items()}


CUSTOM_FIELD_MAX_LENGTH = {FieldType.TEXT.value: 255, FieldType.TEXTAREA.value: 4000}


def validate_custom_data(fields: Iterable[Any], raw: Any) -> tuple[dict[str, str], dict[str, list[str]]]:
    """Check public-form answers against the admin-defined fields.

    Answers are keyed by field label. Returns the cleaned answers and the
    per-label errors; unknown labels are errors.
    """
    if raw in (None, ""):
        raw = {}
    if not isinstance(raw, Mapping):
        return {}, {"custom_data": ["custom_data must be an object."]}

    known = {field.field_label: field for field in fields}
    errors: dict[str, list[str]] = {}
    for label in raw:
        if label not in known:
            errors.setdefault(label, []).append("Unknown field.")

    clean: dict[str, str] = {}
    for label, field in known.items():
        value = raw.get(label)
        text = "" if value is None else str(value).strip()
        if not text:
            if field.is_required:
                errors.setdefault(label, []).append(f"{label} é obrigatório.")
            continue
        field_type = getattr(field.field_type, "value", field.field_type)
        limit = CUSTOM_FIELD_MAX_LENGTH.get(field_type, CUSTOM_FIELD_MAX_LENGTH[FieldType.TEXT.value])
        if len(text) > limit:
            errors.setdefault(label, []).append(f"Field cannot be longer than {limit} characters.")
            continue
        clean[label] = text
    return clean, errors


class JsonForm(FlaskForm):
    class Meta:
        # The JSON API checks the X-CSRFToken header app-wide
        csrf = False


class LoginForm(JsonForm):
    email = StringField("Email", validators=[DataRequired(message="Email is required"), Email(), Length(max=255)])
    password = PasswordField("Password", validators=[DataRequired(message="Password is required"), Length(max=128)])
    remember_me = BooleanField("Remember this device")


class ProfileForm(JsonForm):
    first_name = StringField("First name", validators=[Optional(), Length(max=120)])
    last_name = StringField("Last name", validators=[Optional(), Length(max=120)])
    avatar_url = StringField("Avatar", validators=[Optional(), Length(max=512)])


class DepartmentForm(JsonForm):
    name = StringField("Name", validators=[DataRequired(message="Name is required"), Length(max=120)])
    description = TextAreaField("Description", validators=[Optional(), Length(max=2000)])


class SupplierForm(JsonForm):
    name = StringField("Name", validators=[DataRequired(message="Name is required"), Length(max=255)])
    contact_person = StringField("Contact", validators=[Optional(), Length(max=255)])
    email = StringField("Email", validators=[Optional(), Email(), Length(max=255)])
    phone = StringField("Phone", validators=[Optional(), Length(max=64)])
    address = StringField("Address", validators=[Optional(), Length(max=512)])
    notes = TextAreaField("Notes", validators=[Optional(), Length(max=4000)])


class AssetForm(JsonForm):
    name = StringField("Name", validators=[DataRequired(message="Name is required"), Length(max=255)])
    tag_code = StringField("Tag code", validators=[DataRequired(message="Tag code is required"), Length(max=128)])
    description = TextAreaField("Description", validators=[Optional(), Length(max=4000)])
    acquisition_date = DateField("Acquisition date", validators=[Optional()], format=DATE_FORMATS)
    supplier = StringField("Supplier", validators=[Optional(), Length(max=255)])
    value = FloatField("Value", validators=[Optional(), NumberRange(min=0)])
    useful_life_years = IntegerField("Useful life", validators=[Optional(), NumberRange(min=0, max=200)])
    status = StringField(
        "Status",
        validators=[Optional(), AnyOf([status.value for status in AssetStatus], message="Unknown asset status")],
        default=AssetStatus.ACTIVE.value,
    )
    department_id = IntegerField("Department", validators=[Optional()])
    custodian_id = IntegerField("Custodian", validators=[Optional()])


class PurchaseForm(JsonForm):
    asset_id = IntegerField("Asset", validators=[Optional()])
    product_name = StringField("Product", validators=[Length(max=255)])
    quantity = FloatField("Quantity", validators=[Optional()])
    vendor = StringField("Vendor", validators=[Optional(), Length(max=255)])
    purchase_date = DateField("Purchase date", validators=[Optional()], format=DATE_FORMATS)
    cost = FloatField("Cost", validators=[Optional(), NumberRange(min=0)])
    invoice_number = StringField("Invoice", validators=[Optional(), Length(max=128)])
    notes = TextAreaField("Notes", validators=[Optional(), Length(max=4000)])
    purchase_type = StringField(
        "Type",
        validators=[DataRequired(message="Purchase type is required"), AnyOf([t.value for t in PurchaseType])],
        default=PurchaseType.PRODUCT.value,
    )

    def validate_product_name(self, field) -> None:  # type: ignore[override]
        if self.purchase_type.data == PurchaseType.PRODUCT.value and not (field.data or "").strip():
            raise ValidationError("Product name is required for product purchases.")


class MaintenanceRecordForm(JsonForm):
    asset_id = IntegerField("Asset", validators=[DataRequired(message="Asset is required")])
    maintenance_type = StringField("Type", validators=[DataRequired(message="Type is required"), Length(max=64)])
    description = TextAreaField("Description", validators=[Optional(), Length(max=4000)])
    scheduled_date = DateField(
        "Scheduled date", validators=[DataRequired(message="Scheduled date is required")], format=DATE_FORMATS
    )
    completion_date = DateField("Completion date", validators=[Optional()], format=DATE_FORMATS)
    cost = FloatField("Cost", validators=[Optional(), NumberRange(min=0)])
    status = StringField(
        "Status",
        validators=[Optional(), AnyOf(list(RECORD_STATUSES), message="Unknown maintenance status")],
        default=RECORD_STATUSES[0],
    )
    notes = TextAreaField("Notes", validators=[Optional(), Length(max=4000)])
    technician_name = StringField("Technician", validators=[Optional(), Length(max=255)])

    def validate_completion_date(self, field) -> None:  # type: ignore[override]
        if field.data and self.scheduled_date.data and field.data < self.scheduled_date.data:
            raise ValidationError("Completion date cannot be earlier than the scheduled date.")


class CompleteMaintenanceForm(JsonForm):
    technician_name = StringField(
        "Technician", validators=[DataRequired(message="Please provide the technician name."), Length(max=255)]
    )


class MaintenanceRequestForm(JsonForm):
    requester_name = StringField("Name", validators=[DataRequired(message="Name is required"), Length(max=255)])
    requester_email = StringField("Email", validators=[Optional(), Email(), Length(max=255)])
    requester_phone = StringField("Phone", validators=[Optional(), Length(max=64)])
    description = TextAreaField(
        "Description", validators=[DataRequired(message="Description is required"), Length(max=4000)]
    )


class RequestUpdateForm(JsonForm):
    status = StringField("Status", validators=[Optional(), AnyOf(list(REQUEST_STATUSES), message="Unknown ticket status")])
    technician_name = StringField("Technician", validators=[Optional(), Length(max=255)])


class PublicFormFieldForm(JsonForm):
    field_label = StringField("Label", validators=[DataRequired(message="Label is required"), Length(max=120)])
    field_type = StringField(
        "Type",
        validators=[DataRequired(), AnyOf([t.value for t in FieldType], message="Unknown field type")],
        default=FieldType.TEXT.value,
    )
    is_required = BooleanField("Required")


class TaskForm(JsonForm):
    title = StringField("Title", validators=[DataRequired(message="Title is required"), Length(max=255)])
    description = TextAreaField("Description", validators=[Optional(), Length(max=4000)])
    due_date = DateField("Due date", validators=[Optional()], format=DATE_FORMATS)
    status = StringField(
        "Status",
        validators=[Optional(), AnyOf([s.value for s in TaskStatus], message="Unknown task status")],
        default=TaskStatus.PENDING.value,
    )


class NotificationForm(JsonForm):
    title = StringField("Title", validators=[DataRequired(message="Title is required"), Length(max=255)])
    body = TextAreaField("Body", validators=[DataRequired(message="Body is required"), Length(max=4000)])
    type = StringField(
        "Type",
        validators=[Optional(), AnyOf([t.value for t in NotificationType], message="Unknown notification type")],
        default=NotificationType.INFO.value,
    )
    link = StringField("Link", validators=[Optional(), Length(max=512)])
    target_user_id = IntegerField("Recipient", validators=[Optional()])


class CompanySettingsForm(JsonForm):
    company_name = StringField("Company", validators=[Optional(), Length(max=255)])
    logo_url = StringField("Logo", validators=[Optional(), Length(max=512)])
    favicon_url = StringField("Favicon", validators=[Optional(), Length(max=512)])
    notification_sound_url = StringField("Notification sound", validators=[Optional(), Length(max=512)])


class InviteUserForm(JsonForm):
    email = StringField("Email", validators=[DataRequired(message="Email is required"), Email(), Length(max=255)])
