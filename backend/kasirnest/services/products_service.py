# backend/kasirnest/services/products_service.py
"""
Products Service

TENANCY: Every product operation is scoped to one store. A product id that
belongs to another store behaves exactly like a missing id (NotFoundError).

STOCK: Products never change stock directly here. Initial stock and stock
values in update payloads go through inventory_service so each change writes
its StockMovement row.
"""
from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Category, Product
from ..validation import ConflictError, enforce_rules_product
from .concurrency import begin_write, retry_on_collision, run_with_retry
from .inventory_service import ensure_product_in_store, record_movement, set_stock_locked

PRODUCT_MUTABLE_FIELDS = {
    "name",
    "description",
    "price_cents",
    "cost_cents",
    "sku",
    "barcode",
    "min_stock",
    "max_stock",
    "unit_of_measure",
    "tags",
    "images",
    "track_inventory",
    "allow_negative_stock",
    "is_active",
}

_UNSET = object()


def apply_product_patch(p: Product, patch: dict) -> None:
    for k, v in patch.items():
        if k not in PRODUCT_MUTABLE_FIELDS:
            continue
        setattr(p, k, v)


def _ensure_unique_identifiers(store_id: int, patch: dict, *, exclude_id: int | None = None) -> None:
    for field, label in (("sku", "SKU"), ("barcode", "Barcode")):
        value = patch.get(field)
        if not value:
            continue
        query = db.session.query(Product.id).filter(
            Product.store_id == store_id,
            getattr(Product, field) == value,
        )
        if exclude_id is not None:
            query = query.filter(Product.id != exclude_id)
        if query.first():
            raise ConflictError(f"{label} already exists")


def resolve_category(store_id: int, name: str | None) -> Category | None:
    """
    Find a category by name within the store, creating it on first use.

    Two writers racing on a new name collide on uq_categories_store_name;
    the loser's unit of work is retried and then finds the winner's row.
    """
    if name is None:
        return None
    name = str(name).strip()
    if not name:
        return None

    category = db.session.query(Category).filter_by(store_id=store_id, name=name[:120]).first()
    if category is None:
        category = Category(store_id=store_id, name=name[:120])
        db.session.add(category)
        db.session.flush()
    return category


def list_categories(store_id: int) -> list[Category]:
    return (
        db.session.query(Category)
        .filter_by(store_id=store_id)
        .order_by(Category.name.asc())
        .all()
    )


def list_products(
    store_id: int,
    *,
    include_inactive: bool = False,
    category: str | None = None,
    search: str | None = None,
) -> list[Product]:
    """
    Store-scoped product listing, newest first.

    Soft-deleted products are hidden unless include_inactive is set.
    """
    query = db.session.query(Product).filter(Product.store_id == store_id)

    if not include_inactive:
        query = query.filter(Product.is_active.is_(True))

    if category:
        query = query.join(Category, Product.category_id == Category.id).filter(Category.name == category)

    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(
            db.or_(
                Product.name.ilike(pattern),
                Product.sku.ilike(pattern),
                Product.barcode.ilike(pattern),
            )
        )

    return query.order_by(Product.created_at.desc(), Product.id.desc()).all()


def get_product(store_id: int, product_id: int) -> Product:
    """Inactive products stay readable by id (history screens link to them)."""
    return ensure_product_in_store(store_id, product_id)


def create_product(
    store_id: int,
    patch: dict,
    *,
    category_name: str | None = None,
    user_id: int | None = None,
) -> Product:
    """
    Create product using a validated patch dict.

    A positive initial stock is recorded as an adjustment movement from 0
    ("Initial stock").

    Raises:
        ValidationError: business rules (prices, stock bounds)
        ConflictError: SKU or barcode already exists in the store
    """
    enforce_rules_product(patch)
    fields = dict(patch)
    initial_stock = fields.pop("stock", None) or 0

    def _op():
        begin_write()
        _ensure_unique_identifiers(store_id, fields)
        category = resolve_category(store_id, category_name)

        p = Product(store_id=store_id, stock=0, created_by_user_id=user_id)
        apply_product_patch(p, fields)
        p.category_id = category.id if category else None

        db.session.add(p)
        db.session.flush()  # ensure p.id exists before the movement row

        if initial_stock:
            record_movement(p, initial_stock, "adjustment", notes="Initial stock", user_id=user_id)

        db.session.commit()
        return p

    try:
        product = run_with_retry(_op, retry_on=retry_on_collision())
    except IntegrityError:
        raise ConflictError("SKU or barcode already exists")

    current_app.logger.info("Product created store_id=%s product_id=%s", store_id, product.id)
    return product


def update_product(
    store_id: int,
    product_id: int,
    patch: dict,
    *,
    category_name=_UNSET,
    user_id: int | None = None,
) -> Product:
    """
    Patch a product. A `stock` value becomes one adjustment movement
    ("Stock adjustment") when it differs from the current level.

    category_name: omitted leaves the category alone, None/"" clears it.
    """
    fields = dict(patch)
    new_stock = fields.pop("stock", None)

    def _op():
        begin_write()
        p = ensure_product_in_store(store_id, product_id, lock=True)
        enforce_rules_product(patch, current_min=p.min_stock, current_max=p.max_stock)
        _ensure_unique_identifiers(store_id, fields, exclude_id=p.id)

        if category_name is not _UNSET:
            category = resolve_category(store_id, category_name)
            p.category_id = category.id if category else None

        apply_product_patch(p, fields)

        if new_stock is not None:
            set_stock_locked(p, new_stock, notes="Stock adjustment", user_id=user_id)

        db.session.commit()
        return p

    try:
        return run_with_retry(_op, retry_on=retry_on_collision())
    except IntegrityError:
        raise ConflictError("SKU or barcode already exists")


def delete_product(store_id: int, product_id: int) -> Product:
    """
    Soft delete: is_active=False. Rows referenced by transaction items stay
    in place and keep resolving for history screens.
    """
    def _op():
        begin_write()
        p = ensure_product_in_store(store_id, product_id, lock=True)
        p.is_active = False
        db.session.commit()
        return p

    product = run_with_retry(_op)
    current_app.logger.info("Product deactivated store_id=%s product_id=%s", store_id, product_id)
    return product
