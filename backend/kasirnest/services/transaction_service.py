# Overview: Sale transaction processor; checkout, reversal and transaction queries.

"""
Sales Transaction Service

create_sale_transaction is the one write path for a sale. Everything it
does happens inside one database transaction:

- every product of the cart is locked (FOR UPDATE, ascending id; BEGIN
  IMMEDIATE on SQLite) before its stock is read
- stock is checked against the cumulative quantity per product
- totals are computed from the locked prices unless the cart supplies one
- customer, transaction header, items, stock decrements and StockMovement
  rows are written and committed together

Any failure rolls the whole unit back (run_with_retry). Lock/version
conflicts and transaction-number collisions re-run the unit from the start.

MONEY: integer cents only. Tax is basis points, rounded half-up, applied to
the amount after the cart discount.
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from datetime import datetime

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import joinedload

from ..extensions import db
from ..models import (
    PAYMENT_METHODS,
    Product,
    StockMovement,
    Store,
    Transaction,
    TransactionItem,
)
from ..models.sales import TRANSACTION_STATUSES
from ..validation import NotFoundError, ValidationError, parse_int, parse_money_cents
from kasirnest.time_utils import utcnow
from .concurrency import begin_write, lock_for_update, retry_on_collision, run_with_retry
from .customers_service import resolve_customer
from .inventory_service import record_movement


DEFAULT_LIST_LIMIT = 100
MAX_LIST_LIMIT = 500


class TransactionError(Exception):
    """Raised for sale operation errors."""
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class ProductNotFoundError(TransactionError):
    status_code = 404

    def __init__(self, product_id):
        super().__init__(f"Product not found: {product_id}", details={"product_id": product_id})
        self.product_id = product_id


class InsufficientStockError(TransactionError):
    def __init__(self, product_name: str, available: int, requested: int):
        super().__init__(
            f"Insufficient stock for product: {product_name}",
            details={
                "product_name": product_name,
                "available": available,
                "requested": requested,
            },
        )
        self.product_name = product_name
        self.available = available
        self.requested = requested


class AlreadyCancelledError(TransactionError):
    status_code = 409

    def __init__(self, message: str = "Transaction already cancelled"):
        super().__init__(message)


class InvalidTransactionStateError(TransactionError):
    status_code = 409


class TransactionNumberExhaustedError(TransactionError):
    """Every suffix for the current minute is taken; the client should retry shortly."""
    status_code = 503


@dataclass(frozen=True)
class CartLine:
    product_id: int
    quantity: int
    unit_price_cents: int | None = None
    discount_cents: int = 0


@dataclass(frozen=True)
class PricedLine:
    quantity: int
    unit_price_cents: int
    discount_cents: int = 0

    @property
    def gross_cents(self) -> int:
        return self.quantity * self.unit_price_cents

    @property
    def total_cents(self) -> int:
        return self.gross_cents - self.discount_cents


@dataclass(frozen=True)
class SaleTotals:
    subtotal_cents: int
    discount_cents: int
    taxable_cents: int
    tax_rate_bps: int
    tax_cents: int
    total_cents: int


def parse_cart_lines(raw) -> list[CartLine]:
    """
    Validate the `items` array of a checkout request.

    Each entry: {product_id, quantity, unit_price_cents?, discount_cents?}.
    """
    if not isinstance(raw, list) or not raw:
        raise ValidationError("Transaction items are required")

    lines = []
    for i, item in enumerate(raw):
        if not isinstance(item, dict):
            raise ValidationError(f"items[{i}] must be an object")

        product_id = parse_int(item.get("product_id"), f"items[{i}].product_id", minimum=1)
        quantity = parse_int(item.get("quantity"), f"items[{i}].quantity", minimum=1)

        unit_price = item.get("unit_price_cents")
        if unit_price is not None:
            unit_price = parse_money_cents(unit_price, f"items[{i}].unit_price_cents")

        discount = item.get("discount_cents")
        discount = 0 if discount is None else parse_money_cents(discount, f"items[{i}].discount_cents")

        if unit_price is not None and discount > quantity * unit_price:
            raise ValidationError(f"items[{i}].discount_cents cannot exceed the line amount")

        lines.append(CartLine(product_id, quantity, unit_price, discount))

    return lines


def _round_half_up_div(numerator: int, denominator: int) -> int:
    return (2 * numerator + denominator) // (2 * denominator)


def compute_totals(lines, discount_cents: int, tax_rate_bps: int) -> SaleTotals:
    """
    subtotal = sum(qty * price - line discount)
    discount = min(cart discount, subtotal)
    tax      = round_half_up((subtotal - discount) * bps / 10000)
    total    = subtotal - discount + tax
    """
    if discount_cents < 0:
        raise ValidationError("discount_cents must be >= 0")
    if not 0 <= tax_rate_bps <= 10000:
        raise ValidationError("tax_rate must be between 0 and 1")

    subtotal = 0
    for line in lines:
        if line.total_cents < 0:
            raise ValidationError("Line discount cannot exceed the line amount")
        subtotal += line.total_cents

    discount = min(discount_cents, subtotal)
    taxable = subtotal - discount
    tax = _round_half_up_div(taxable * tax_rate_bps, 10000)

    return SaleTotals(
        subtotal_cents=subtotal,
        discount_cents=discount,
        taxable_cents=taxable,
        tax_rate_bps=tax_rate_bps,
        tax_cents=tax,
        total_cents=taxable + tax,
    )


def generate_transaction_number(store_id: int, now: datetime | None = None) -> str:
    """
    TRX + YYYYMMDDHHmm + 2-digit suffix, skipping suffixes already used in
    this store for the same minute. Uniqueness is enforced by
    uq_transactions_store_number; a concurrent collision is retried.
    """
    prefix = f"TRX{(now or utcnow()):%Y%m%d%H%M}"
    used = {
        number
        for (number,) in db.session.query(Transaction.transaction_number).filter(
            Transaction.store_id == store_id,
            Transaction.transaction_number.like(f"{prefix}%"),
        )
    }
    free = [s for s in range(100) if f"{prefix}{s:02d}" not in used]
    if not free:
        raise TransactionNumberExhaustedError(
            "Too many transactions this minute, please retry", details={"retry": True}
        )
    return f"{prefix}{random.choice(free):02d}"


def _clean_notes(notes) -> str | None:
    if notes is None:
        return None
    if not isinstance(notes, str):
        raise ValidationError("notes must be a string")
    return notes.strip() or None


def create_sale_transaction(
    store_id: int,
    lines,
    payment_method: str,
    *,
    discount_cents: int = 0,
    tax_rate_bps: int | None = None,
    customer: dict | None = None,
    amount_paid_cents: int | None = None,
    notes: str | None = None,
    user_id: int | None = None,
) -> Transaction:
    """
    Record one completed, paid sale.

    lines: CartLine objects or the raw `items` array.
    tax_rate_bps: defaults to the store's configured rate.
    amount_paid_cents: defaults to the total; otherwise must cover it and
    the difference is returned as change.

    Raises:
        ValidationError: malformed cart, payment method, discount or payment
        ProductNotFoundError: a product is missing, inactive or in another store
        InsufficientStockError: tracked stock cannot cover the cart
    """
    if not (isinstance(lines, list) and lines and all(isinstance(x, CartLine) for x in lines)):
        lines = parse_cart_lines(lines)

    if payment_method not in PAYMENT_METHODS:
        raise ValidationError(f"payment_method must be one of: {', '.join(PAYMENT_METHODS)}")

    discount_cents = parse_money_cents(discount_cents, "discount_cents")
    if tax_rate_bps is not None:
        tax_rate_bps = parse_int(tax_rate_bps, "tax_rate_bps", minimum=0, maximum=10000)
    if amount_paid_cents is not None:
        amount_paid_cents = parse_money_cents(amount_paid_cents, "amount_paid_cents")
    notes = _clean_notes(notes)

    requested: dict[int, int] = {}
    for line in lines:
        requested[line.product_id] = requested.get(line.product_id, 0) + line.quantity

    def _op():
        begin_write()

        store = db.session.get(Store, store_id)
        if store is None:
            raise NotFoundError("Store not found")

        products = lock_for_update(
            db.session.query(Product)
            .filter(
                Product.id.in_(sorted(requested)),
                Product.store_id == store_id,
                Product.is_active.is_(True),
            )
            .order_by(Product.id.asc())
        ).all()
        by_id = {p.id: p for p in products}

        for line in lines:
            if line.product_id not in by_id:
                raise ProductNotFoundError(line.product_id)

        for product_id in sorted(requested):
            p = by_id[product_id]
            if p.track_inventory and not p.allow_negative_stock and p.stock < requested[product_id]:
                raise InsufficientStockError(p.name, p.stock, requested[product_id])

        priced = []
        for line in lines:
            price = line.unit_price_cents
            if price is None:
                price = by_id[line.product_id].price_cents
            priced_line = PricedLine(line.quantity, price, line.discount_cents)
            if priced_line.total_cents < 0:
                raise ValidationError(f"Discount for product {line.product_id} exceeds the line amount")
            priced.append(priced_line)

        rate = store.tax_rate_bps if tax_rate_bps is None else tax_rate_bps
        totals = compute_totals(priced, discount_cents, rate)

        paid = totals.total_cents if amount_paid_cents is None else amount_paid_cents
        if paid < totals.total_cents:
            raise ValidationError(
                "amount_paid_cents must cover the total",
            )

        cust = resolve_customer(store_id, customer)

        trx = Transaction(
            store_id=store_id,
            customer_id=cust.id if cust else None,
            transaction_number=generate_transaction_number(store_id),
            type="sale",
            status="completed",
            subtotal_cents=totals.subtotal_cents,
            discount_cents=totals.discount_cents,
            tax_rate_bps=totals.tax_rate_bps,
            tax_cents=totals.tax_cents,
            total_cents=totals.total_cents,
            payment_method=payment_method,
            payment_status="paid",
            amount_paid_cents=paid,
            change_cents=paid - totals.total_cents,
            notes=notes,
            created_by_user_id=user_id,
        )
        db.session.add(trx)
        db.session.flush()

        for line, priced_line in zip(lines, priced):
            p = by_id[line.product_id]
            db.session.add(TransactionItem(
                transaction_id=trx.id,
                product_id=p.id,
                product_name=p.name,
                sku=p.sku,
                quantity=line.quantity,
                unit_price_cents=priced_line.unit_price_cents,
                discount_cents=priced_line.discount_cents,
                total_cents=priced_line.total_cents,
            ))
            if p.track_inventory:
                record_movement(
                    p,
                    -line.quantity,
                    "sale",
                    transaction_id=trx.id,
                    notes=f"Sale {trx.transaction_number}",
                    user_id=user_id,
                )

        db.session.commit()
        return trx

    try:
        trx = run_with_retry(_op, retry_on=retry_on_collision())
    except IntegrityError:
        current_app.logger.exception("Sale could not be recorded store_id=%s", store_id)
        raise TransactionError("Could not record the transaction, please retry", details={"retry": True})

    current_app.logger.info(
        "Sale committed store_id=%s transaction_id=%s total_cents=%s",
        store_id, trx.id, trx.total_cents,
    )
    return trx


def _reverse_sale(
    store_id: int,
    transaction_id: int,
    *,
    new_status: str,
    movement_type: str,
    payment_status: str | None,
    user_id: int | None,
    reason: str | None,
) -> Transaction:
    """
    Put back every unit the sale took out of stock and close the sale.

    Quantities come from the sale's own `sale` movements, summed per product,
    so untracked lines are skipped and each product gets one movement.
    """
    reason = _clean_notes(reason)

    def _op():
        begin_write()
        trx = lock_for_update(
            db.session.query(Transaction).filter_by(id=transaction_id, store_id=store_id)
        ).first()
        if trx is None:
            raise NotFoundError("Transaction not found")

        if trx.status in ("cancelled", "refunded"):
            raise AlreadyCancelledError(f"Transaction already {trx.status}")
        if trx.status != "completed":
            raise InvalidTransactionStateError(f"Cannot reverse a transaction with status {trx.status}")

        taken = dict(
            db.session.query(StockMovement.product_id, func.sum(StockMovement.quantity))
            .filter(StockMovement.transaction_id == trx.id, StockMovement.movement_type == "sale")
            .group_by(StockMovement.product_id)
            .all()
        )

        if taken:
            products = lock_for_update(
                db.session.query(Product)
                .filter(Product.id.in_(sorted(taken)), Product.store_id == store_id)
                .order_by(Product.id.asc())
            ).all()
            if len(products) != len(taken):
                raise InvalidTransactionStateError("Transaction references products that no longer exist")

            label = "Cancel" if new_status == "cancelled" else "Refund"
            for p in products:
                record_movement(
                    p,
                    -int(taken[p.id]),
                    movement_type,
                    transaction_id=trx.id,
                    notes=f"{label} {trx.transaction_number}",
                    user_id=user_id,
                )

        trx.status = new_status
        if payment_status:
            trx.payment_status = payment_status
        trx.cancelled_by_user_id = user_id
        trx.cancelled_at = utcnow()
        trx.cancel_reason = reason[:255] if reason else None

        db.session.commit()
        return trx

    trx = run_with_retry(_op)
    current_app.logger.info(
        "Sale %s store_id=%s transaction_id=%s", new_status, store_id, transaction_id
    )
    return trx


def cancel_transaction(
    store_id: int,
    transaction_id: int,
    user_id: int | None = None,
    reason: str | None = None,
) -> Transaction:
    """completed -> cancelled, stock re-credited with adjustment movements."""
    return _reverse_sale(
        store_id,
        transaction_id,
        new_status="cancelled",
        movement_type="adjustment",
        payment_status=None,
        user_id=user_id,
        reason=reason,
    )


def refund_transaction(
    store_id: int,
    transaction_id: int,
    user_id: int | None = None,
    reason: str | None = None,
) -> Transaction:
    """completed -> refunded, stock re-credited with return movements."""
    return _reverse_sale(
        store_id,
        transaction_id,
        new_status="refunded",
        movement_type="return",
        payment_status="refunded",
        user_id=user_id,
        reason=reason,
    )


def list_transactions(
    store_id: int,
    *,
    status: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = DEFAULT_LIST_LIMIT,
) -> list[Transaction]:
    """Newest first; `end` is exclusive."""
    if status is not None and status not in TRANSACTION_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(TRANSACTION_STATUSES)}")

    limit = max(1, min(int(limit), MAX_LIST_LIMIT))

    query = (
        db.session.query(Transaction)
        .options(joinedload(Transaction.customer), joinedload(Transaction.created_by))
        .filter(Transaction.store_id == store_id)
    )
    if status:
        query = query.filter(Transaction.status == status)
    if start:
        query = query.filter(Transaction.created_at >= start)
    if end:
        query = query.filter(Transaction.created_at < end)

    return query.order_by(Transaction.created_at.desc(), Transaction.id.desc()).limit(limit).all()


def get_transaction(store_id: int, transaction_id: int) -> Transaction:
    trx = db.session.query(Transaction).filter_by(id=transaction_id, store_id=store_id).first()
    if trx is None:
        raise NotFoundError("Transaction not found")
    return trx


def transaction_detail(trx: Transaction) -> dict:
    data = trx.to_dict()
    data["items"] = [item.to_dict() for item in trx.items]
    data["customer"] = trx.customer.to_dict() if trx.customer else None
    return data
