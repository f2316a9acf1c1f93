from __future__ import annotations

from typing import Any

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required
from sqlalchemy import or_

from assetdesk.cache import get_query_cache
from assetdesk.extensions import db
from assetdesk.forms import AssetForm, PurchaseForm, SupplierForm, form_errors, json_formdata
from assetdesk.inventory import current_stock
from assetdesk.models import Asset, Purchase, PurchaseType, Supplier

assets_bp = Blueprint("assets", __name__, url_prefix="/api")

ASSET_CACHE_KEYS = ("assets", "dashboard")
PURCHASE_CACHE_KEYS = ("purchases", "inventory", "dashboard")


def _merged_formdata(entity: Any | None) -> Any:
    """Form data for a partial update: stored values overlaid with the request body."""
    body = request.get_json(silent=True) or {}
    if entity is None:
        return json_formdata(body)
    return json_formdata({**entity.to_dict(), **body})


def _validation_error(form):
    return jsonify({"message": "Please review the highlighted fields.", "errors": form_errors(form)}), 400


def _apply_asset_form(asset: Asset, form: AssetForm) -> None:
    asset.name = form.name.data.strip()
    asset.tag_code = form.tag_code.data.strip()
    asset.description = form.description.data or None
    asset.acquisition_date = form.acquisition_date.data
    asset.supplier = form.supplier.data or None
    asset.value = form.value.data
    asset.useful_life_years = form.useful_life_years.data
    asset.status = form.status.data or asset.status or "active"
    asset.department_id = form.department_id.data
    asset.custodian_id = form.custodian_id.data


def _tag_taken(tag_code: str, exclude_id: int | None = None) -> bool:
    query = Asset.query.filter(Asset.tag_code == tag_code.strip())
    if exclude_id is not None:
        query = query.filter(Asset.id != exclude_id)
    return db.session.query(query.exists()).scalar()


@assets_bp.route("/assets", methods=["GET"])
@login_required
def list_assets():
    search = (request.args.get("search") or "").strip()
    page = request.args.get("page", type=int)
    page_size = request.args.get("page_size", type=int)

    query = Asset.query.order_by(Asset.created_at.desc(), Asset.id.desc())
    if search:
        like = f"%{search}%"
        query = query.filter(or_(Asset.name.ilike(like), Asset.tag_code.ilike(like), Asset.status.ilike(like)))

    count = query.count()
    if page and page_size and page > 0 and page_size > 0:
        query = query.offset((page - 1) * page_size).limit(page_size)
    return jsonify({"data": [asset.to_dict() for asset in query.all()], "count": count})


@assets_bp.route("/assets/all", methods=["GET"])
@login_required
def list_all_assets():
    def load() -> list[dict[str, Any]]:
        return [asset.to_dict() for asset in Asset.query.order_by(Asset.name.asc()).all()]

    return jsonify(get_query_cache().fetch(("assets", "all"), load))


@assets_bp.route("/assets/<int:asset_id>", methods=["GET"])
@login_required
def get_asset(asset_id: int):
    asset = db.get_or_404(Asset, asset_id, description="Asset not found")
    return jsonify(asset.to_dict())


@assets_bp.route("/assets/<int:asset_id>/detail", methods=["GET"])
@login_required
def asset_detail(asset_id: int):
    asset = db.get_or_404(Asset, asset_id, description="Asset not found")
    purchases = Purchase.query.filter_by(asset_id=asset.id).order_by(Purchase.purchase_date.desc()).all()
    payload = asset.to_dict()
    payload["department_name"] = asset.department.name if asset.department else None
    payload["custodian_name"] = asset.custodian.full_name if asset.custodian else None
    payload["maintenance_records"] = [record.to_dict() for record in asset.maintenance_records]
    payload["purchases"] = [purchase.to_dict() for purchase in purchases]
    return jsonify(payload)


@assets_bp.route("/assets", methods=["POST"])
@login_required
def create_asset():
    form = AssetForm(formdata=_merged_formdata(None))
    if not form.validate():
        return _validation_error(form)
    if _tag_taken(form.tag_code.data):
        return jsonify({"message": "Tag code already in use.", "errors": {"tag_code": ["Tag code already in use."]}}), 400

    asset = Asset(user_id=current_user.id)
    _apply_asset_form(asset, form)
    db.session.add(asset)
    db.session.commit()
    get_query_cache().invalidate_many(ASSET_CACHE_KEYS)
    return jsonify(asset.to_dict()), 201


@assets_bp.route("/assets/<int:asset_id>", methods=["PUT", "PATCH"])
@login_required
def update_asset(asset_id: int):
    asset = db.get_or_404(Asset, asset_id, description="Asset not found")
    form = AssetForm(formdata=_merged_formdata(asset))
    if not form.validate():
        return _validation_error(form)
    if _tag_taken(form.tag_code.data, exclude_id=asset.id):
        return jsonify({"message": "Tag code already in use.", "errors": {"tag_code": ["Tag code already in use."]}}), 400

    _apply_asset_form(asset, form)
    db.session.commit()
    get_query_cache().invalidate_many(ASSET_CACHE_KEYS + ("maintenanceRecords",))
    return jsonify(asset.to_dict())


@assets_bp.route("/assets/<int:asset_id>", methods=["DELETE"])
@login_required
def delete_asset(asset_id: int):
    asset = db.get_or_404(Asset, asset_id, description="Asset not found")
    db.session.delete(asset)
    db.session.commit()
    get_query_cache().invalidate_many(ASSET_CACHE_KEYS + ("maintenanceRecords",))
    return jsonify({"message": "Asset deleted.", "id": asset_id})


def _apply_purchase_form(purchase: Purchase, form: PurchaseForm) -> None:
    purchase.asset_id = form.asset_id.data
    purchase.product_name = (form.product_name.data or "").strip() or None
    purchase.quantity = form.quantity.data
    purchase.vendor = form.vendor.data or None
    purchase.purchase_date = form.purchase_date.data
    purchase.cost = form.cost.data
    purchase.invoice_number = form.invoice_number.data or None
    purchase.notes = form.notes.data or None
    purchase.purchase_type = PurchaseType(form.purchase_type.data)


def _purchases_newest_first(query):
    return query.order_by(Purchase.purchase_date.desc(), Purchase.id.desc()).all()


@assets_bp.route("/purchases", methods=["GET"])
@login_required
def list_purchases():
    return jsonify([purchase.to_dict() for purchase in _purchases_newest_first(Purchase.query)])


@assets_bp.route("/purchases/by-asset/<int:asset_id>", methods=["GET"])
@login_required
def purchases_by_asset(asset_id: int):
    purchases = _purchases_newest_first(Purchase.query.filter_by(asset_id=asset_id))
    return jsonify([purchase.to_dict() for purchase in purchases])


@assets_bp.route("/purchases/by-product", methods=["GET"])
@login_required
def purchases_by_product():
    name = (request.args.get("name") or "").strip()
    if not name:
        return jsonify({"message": "Product name is required."}), 400
    purchases = _purchases_newest_first(Purchase.query.filter_by(product_name=name))
    return jsonify([purchase.to_dict() for purchase in purchases])


@assets_bp.route("/purchases", methods=["POST"])
@login_required
def create_purchase():
    form = PurchaseForm(formdata=_merged_formdata(None))
    if not form.validate():
        return _validation_error(form)
    purchase = Purchase(user_id=current_user.id)
    _apply_purchase_form(purchase, form)
    db.session.add(purchase)
    db.session.commit()
    get_query_cache().invalidate_many(PURCHASE_CACHE_KEYS)
    return jsonify(purchase.to_dict()), 201


@assets_bp.route("/purchases/<int:purchase_id>", methods=["PUT", "PATCH"])
@login_required
def update_purchase(purchase_id: int):
    purchase = db.get_or_404(Purchase, purchase_id, description="Purchase not found")
    form = PurchaseForm(formdata=_merged_formdata(purchase))
    if not form.validate():
        return _validation_error(form)
    _apply_purchase_form(purchase, form)
    db.session.commit()
    get_query_cache().invalidate_many(PURCHASE_CACHE_KEYS)
    return jsonify(purchase.to_dict())


@assets_bp.route("/purchases/<int:purchase_id>", methods=["DELETE"])
@login_required
def delete_purchase(purchase_id: int):
    purchase = db.get_or_404(Purchase, purchase_id, description="Purchase not found")
    db.session.delete(purchase)
    db.session.commit()
    get_query_cache().invalidate_many(PURCHASE_CACHE_KEYS)
    return jsonify({"message": "Purchase deleted.", "id": purchase_id})


@assets_bp.route("/inventory", methods=["GET"])
@login_required
def inventory():
    return jsonify(get_query_cache().fetch(("inventory",), current_stock))


def _apply_supplier_form(supplier: Supplier, form: SupplierForm) -> None:
    supplier.name = form.name.data.strip()
    supplier.contact_person = form.contact_person.data or None
    supplier.email = form.email.data or None
    supplier.phone = form.phone.data or None
    supplier.address = form.address.data or None
    supplier.notes = form.notes.data or None


@assets_bp.route("/suppliers", methods=["GET"])
@login_required
def list_suppliers():
    return jsonify([supplier.to_dict() for supplier in Supplier.query.order_by(Supplier.name.asc()).all()])


@assets_bp.route("/suppliers", methods=["POST"])
@login_required
def create_supplier():
    form = SupplierForm(formdata=_merged_formdata(None))
    if not form.validate():
        return _validation_error(form)
    supplier = Supplier(user_id=current_user.id)
    _apply_supplier_form(supplier, form)
    db.session.add(supplier)
    db.session.commit()
    return jsonify(supplier.to_dict()), 201


@assets_bp.route("/suppliers/<int:supplier_id>", methods=["PUT", "PATCH"])
@login_required
def update_supplier(supplier_id: int):
    supplier = db.get_or_404(Supplier, supplier_id, description="Supplier not found")
    form = SupplierForm(formdata=_merged_formdata(supplier))
    if not form.validate():
        return _validation_error(form)
    _apply_supplier_form(supplier, form)
    db.session.commit()
    return jsonify(supplier.to_dict())


@assets_bp.route("/suppliers/<int:supplier_id>", methods=["DELETE"])
@login_required
def delete_supplier(supplier_id: int):
    supplier = db.get_or_404(Supplier, supplier_id, description="Supplier not found")
    db.session.delete(supplier)
    db.session.commit()
    return jsonify({"message": "Supplier deleted.", "id": supplier_id})
