from __future__ import annotations

import logging
import math
from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from typing import Any, Iterable, Mapping

from .extensions import db
from .models import MaintenanceProduct, MaintenanceRecord, Purchase, PurchaseType

logger = logging.getLogger(__name__)

RESTORE_NOTE = "Restauração de estoque - Cancelamento de manutenção"
USAGE_NOTE = "Uso na manutenção do ativo: {asset_name}"


@dataclass(frozen=True)
class ProductLine:
    product_name: str
    quantity: float

    @classmethod
    def parse_many(cls, raw: Any) -> list["ProductLine"]:
        """Validate the ``products`` list sent with a maintenance record."""
        if raw in (None, ""):
            return []
        if not isinstance(raw, list):
            raise ValueError("products must be a list.")
        lines: list[ProductLine] = []
        for item in raw:
            if not isinstance(item, Mapping):
                raise ValueError("Each product needs a product_name and a quantity.")
            name = str(item.get("product_name") or "").strip()
            try:
                quantity = float(item.get("quantity"))
            except (TypeError, ValueError) as exc:
                raise ValueError(f"Invalid quantity for product {name or '?'}.") from exc
            if not name or not math.isfinite(quantity) or quantity <= 0:
                raise ValueError("Each product needs a product_name and a positive quantity.")
            lines.append(cls(product_name=name, quantity=quantity))
        return lines


def current_stock() -> list[dict[str, Any]]:
    """Sum the ledger per product name; rows without a name or quantity are skipped."""
    totals: dict[str, float] = defaultdict(float)
    rows = (
        db.session.query(Purchase.product_name, Purchase.quantity)
        .filter(Purchase.product_name.isnot(None), Purchase.quantity.isnot(None))
        .all()
    )
    for product_name, quantity in rows:
        if product_name and quantity:
            totals[product_name] += quantity
    return [{"name": name, "quantity": totals[name]} for name in sorted(totals)]


def _ledger_rows(lines: Iterable[ProductLine], sign: int, notes: str, user_id: int | None) -> list[Purchase]:
    today = date.today()
    return [
        Purchase(
            product_name=line.product_name,
            quantity=sign * abs(line.quantity),
            purchase_date=today,
            notes=notes,
            purchase_type=PurchaseType.PRODUCT,
            user_id=user_id,
        )
        for line in lines
    ]


def attach_products(record: MaintenanceRecord, lines: list[ProductLine], user_id: int | None) -> None:
    """Link consumed products to a new record and book them out of stock.

    Adds to the session only; the caller commits together with the record.
    """
    if not lines:
        return
    for line in lines:
        record.products.append(
            MaintenanceProduct(product_name=line.product_name, quantity_used=line.quantity, user_id=user_id)
        )
    asset_name = record.asset.name if record.asset else "N/A"
    db.session.add_all(_ledger_rows(lines, -1, USAGE_NOTE.format(asset_name=asset_name), user_id))


def restore_products(record: MaintenanceRecord, user_id: int | None) -> int:
    """Put a deleted record's products back into stock; the caller commits."""
    lines = [ProductLine(product.product_name, product.quantity_used) for product in record.products]
    if lines:
        db.session.add_all(_ledger_rows(lines, 1, RESTORE_NOTE, user_id))
        logger.info("Restoring %d products from maintenance %s", len(lines), record.id)
    return len(lines)
