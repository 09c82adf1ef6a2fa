# Overview: Service-layer operations for inventory; stock levels and the stock movement ledger.

# backend/kasirnest/services/inventory_service.py

from flask import current_app

from ..extensions import db
from ..models import Product, StockMovement
from ..validation import NotFoundError, ValidationError
from .concurrency import begin_write, lock_for_update, run_with_retry
"""
KasirNest Stock Invariants (authoritative)

Stock model:
- Product.stock is the on-hand quantity and the only place stock lives.
- Every write to Product.stock appends exactly one StockMovement in the same
  DB transaction, with new_stock - previous_stock == quantity.
- Movements are append-only (no updates/deletes).

Movement types:
- sale: checkout decrement (negative quantity), written by transaction_service.
- adjustment: manual set/adjust, initial stock, cancellation re-credit.
- return: refund re-credit.

Business invariants:
- Tracked products never go below zero unless allow_negative_stock is set.
- Writers lock the product row first (SELECT ... FOR UPDATE; BEGIN IMMEDIATE on SQLite).
"""


MOVEMENT_TYPES = ("sale", "adjustment", "return")


def ensure_product_in_store(
    store_id: int,
    product_id: int,
    *,
    require_active: bool = False,
    lock: bool = False,
) -> Product:
    """Resolve a product inside a store; anything outside the store is a 404."""
    query = db.session.query(Product).filter_by(id=product_id, store_id=store_id)
    if require_active:
        query = query.filter(Product.is_active.is_(True))
    if lock:
        query = lock_for_update(query)
    product = query.first()
    if product is None:
        raise NotFoundError("Product not found")
    return product


def record_movement(
    product: Product,
    quantity: int,
    movement_type: str,
    *,
    transaction_id: int | None = None,
    notes: str | None = None,
    user_id: int | None = None,
) -> StockMovement:
    """
    Core stock write without locking, retry or commit.

    The caller must hold the product row lock. Applies the signed delta to
    product.stock and appends the matching movement row.
    """
    if movement_type not in MOVEMENT_TYPES:
        raise ValueError(f"unknown movement type {movement_type}")

    previous = product.stock
    new_stock = previous + quantity
    if new_stock < 0 and product.track_inventory and not product.allow_negative_stock:
        raise ValidationError(f"Stock for {product.name} cannot go below zero")

    product.stock = new_stock
    movement = StockMovement(
        store_id=product.store_id,
        product_id=product.id,
        transaction_id=transaction_id,
        movement_type=movement_type,
        quantity=quantity,
        previous_stock=previous,
        new_stock=new_stock,
        notes=(notes or "")[:255] or None,
        created_by_user_id=user_id,
    )
    db.session.add(movement)
    return movement


def set_stock_locked(
    product: Product,
    new_stock: int,
    *,
    notes: str | None = None,
    user_id: int | None = None,
) -> StockMovement | None:
    """Move a locked product to an absolute stock level. No-op when unchanged."""
    delta = new_stock - product.stock
    if delta == 0:
        return None
    return record_movement(
        product,
        delta,
        "adjustment",
        notes=notes or "Manual stock update",
        user_id=user_id,
    )


def set_stock(
    store_id: int,
    product_id: int,
    new_stock: int,
    *,
    notes: str | None = None,
    user_id: int | None = None,
) -> Product:
    """Set absolute stock; writes one adjustment movement when the level changes."""
    if isinstance(new_stock, bool) or not isinstance(new_stock, int):
        raise ValidationError("stock must be an integer")

    def _op():
        begin_write()
        product = ensure_product_in_store(store_id, product_id, lock=True)
        if new_stock < 0 and not product.allow_negative_stock:
            raise ValidationError("stock must be >= 0")
        movement = set_stock_locked(product, new_stock, notes=notes, user_id=user_id)
        db.session.commit()
        if movement is not None:
            current_app.logger.info(
                "Stock set store_id=%s product_id=%s delta=%s", store_id, product_id, movement.quantity
            )
        return product

    return run_with_retry(_op)


def adjust_stock(
    store_id: int,
    product_id: int,
    quantity_delta: int,
    *,
    notes: str | None = None,
    user_id: int | None = None,
) -> Product:
    """Apply a signed delta; rejects results below zero unless the product allows it."""
    if isinstance(quantity_delta, bool) or not isinstance(quantity_delta, int):
        raise ValidationError("quantity_delta must be an integer")

    def _op():
        begin_write()
        product = ensure_product_in_store(store_id, product_id, lock=True)
        if quantity_delta != 0:
            if product.stock + quantity_delta < 0 and not product.allow_negative_stock:
                raise ValidationError("Adjustment would make stock negative")
            record_movement(
                product,
                quantity_delta,
                "adjustment",
                notes=notes or "Manual stock adjustment",
                user_id=user_id,
            )
        db.session.commit()
        current_app.logger.info(
            "Stock adjusted store_id=%s product_id=%s delta=%s", store_id, product_id, quantity_delta
        )
        return product

    return run_with_retry(_op)


def list_low_stock(store_id: int) -> list[Product]:
    """Active, tracked products at or below their reorder level (min_stock > 0)."""
    return (
        db.session.query(Product)
        .filter(
            Product.store_id == store_id,
            Product.is_active.is_(True),
            Product.track_inventory.is_(True),
            Product.min_stock > 0,
            Product.stock <= Product.min_stock,
        )
        .order_by(Product.stock.asc(), Product.name.asc())
        .all()
    )


def list_stock_movements(store_id: int, product_id: int, limit: int = 100) -> list[StockMovement]:
    ensure_product_in_store(store_id, product_id)

    limit = max(1, min(int(limit), 500))
    return (
        db.session.query(StockMovement)
        .filter_by(store_id=store_id, product_id=product_id)
        .order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
        .limit(limit)
        .all()
    )
