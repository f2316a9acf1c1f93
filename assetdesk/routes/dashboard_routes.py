from __future__ import annotations

from collections import defaultdict
from datetime import date
from typing import Any

from flask import Blueprint, jsonify
from flask_login import login_required
from sqlalchemy import func

from assetdesk.access import get_current_user
from assetdesk.cache import get_query_cache
from assetdesk.extensions import db
from assetdesk.models import (
    ASSET_STATUS_LABELS,
    Asset,
    AssetStatus,
    Department,
    MaintenanceRecord,
    MaintenanceRequest,
    Task,
    TaskStatus,
)
from assetdesk.workflow import OPEN_RECORD_STATUSES, OPEN_REQUEST_STATUSES, RecordStatus

dashboard_bp = Blueprint("dashboard", __name__, url_prefix="/api/dashboard")

MONTH_ABBREVIATIONS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")
NO_DEPARTMENT_LABEL = "Sem departamento"
COST_WINDOW_MONTHS = 6


def _month_start(day: date, months_back: int) -> date:
    index = day.year * 12 + (day.month - 1) - months_back
    return date(index // 12, index % 12 + 1, 1)


def _month_label(month: date) -> str:
    return f"{MONTH_ABBREVIATIONS[month.month - 1]}/{month.strftime('%y')}"


def kpis(today: date | None = None, owner_id: int | None = None) -> dict[str, Any]:
    """Headline counters. ``overdueTasks`` only counts tasks of ``owner_id`` when given."""
    today = today or date.today()
    overdue = Task.query.filter(Task.status == TaskStatus.PENDING, Task.due_date < today)
    if owner_id is not None:
        overdue = overdue.filter(Task.user_id == owner_id)
    completed_costs = [
        cost or 0
        for (cost,) in db.session.query(MaintenanceRecord.cost)
        .filter(MaintenanceRecord.status == RecordStatus.COMPLETED.value)
        .all()
    ]
    return {
        "assetsInMaintenance": Asset.query.filter(Asset.status == AssetStatus.IN_MAINTENANCE.value).count(),
        "openWorkOrders": MaintenanceRecord.query.filter(MaintenanceRecord.status.in_(OPEN_RECORD_STATUSES)).count(),
        "upcomingMaintenances": MaintenanceRecord.query.filter(
            MaintenanceRecord.status == RecordStatus.SCHEDULED.value,
            MaintenanceRecord.scheduled_date >= today,
        ).count(),
        "openRequests": MaintenanceRequest.query.filter(MaintenanceRequest.status.in_(OPEN_REQUEST_STATUSES)).count(),
        "totalAssets": Asset.query.count(),
        "averageMaintenanceCost": sum(completed_costs) / len(completed_costs) if completed_costs else 0,
        "overdueTasks": overdue.count(),
    }


def maintenance_costs(today: date | None = None) -> list[dict[str, Any]]:
    """Completed maintenance cost per month, oldest first, current month included."""
    today = today or date.today()
    months = [_month_start(today, back) for back in range(COST_WINDOW_MONTHS - 1, -1, -1)]
    totals: dict[date, float] = {month: 0.0 for month in months}
    rows = (
        db.session.query(MaintenanceRecord.completion_date, MaintenanceRecord.cost)
        .filter(
            MaintenanceRecord.status == RecordStatus.COMPLETED.value,
            MaintenanceRecord.completion_date >= months[0],
        )
        .all()
    )
    for completion_date, cost in rows:
        if not completion_date or not cost:
            continue
        month = completion_date.replace(day=1)
        if month in totals:
            totals[month] += float(cost)
    return [{"name": _month_label(month), "Custo": totals[month]} for month in months]


def status_distribution() -> list[dict[str, Any]]:
    rows = db.session.query(Asset.status, func.count(Asset.id)).group_by(Asset.status).order_by(Asset.status).all()
    return [{"name": ASSET_STATUS_LABELS.get(status, status), "value": count} for status, count in rows]


def department_distribution() -> list[dict[str, Any]]:
    counts: dict[str, int] = defaultdict(int)
    rows = (
        db.session.query(Department.name, func.count(Asset.id))
        .select_from(Asset)
        .outerjoin(Department, Asset.department_id == Department.id)
        .group_by(Department.name)
        .all()
    )
    for name, count in rows:
        counts[name or NO_DEPARTMENT_LABEL] += count
    return [{"name": name, "value": counts[name]} for name in sorted(counts)]


@dashboard_bp.route("", methods=["GET"])
@login_required
def overview():
    today = date.today()
    user = get_current_user()

    def load() -> dict[str, Any]:
        return {
            "kpis": kpis(today, owner_id=user.id),
            "maintenanceCosts": maintenance_costs(today),
            "assetStatus": status_distribution(),
            "assetsByDepartment": department_distribution(),
        }

    return jsonify(get_query_cache().fetch(("dashboard", today.isoformat(), user.id), load))
