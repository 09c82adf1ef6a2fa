# Overview: Service-layer operations for reporting; dashboard aggregates over completed sales.

from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy import func

from ..extensions import db
from ..models import Product, Transaction, TransactionItem
from ..validation import ValidationError
from kasirnest.time_utils import (
    start_of_day,
    start_of_month,
    start_of_next_month,
    to_utc_z,
    utcnow,
)


TOP_PRODUCTS_LIMIT = 5
RECENT_TRANSACTIONS_LIMIT = 10
MAX_DAILY_DAYS = 90


def _average(total: int, count: int) -> int:
    """Half-up integer average (cents)."""
    if not count:
        return 0
    return (2 * total + count) // (2 * count)


def _completed_between(store_id: int, start: datetime | None, end: datetime | None):
    query = db.session.query(Transaction).filter(
        Transaction.store_id == store_id,
        Transaction.status == "completed",
    )
    if start:
        query = query.filter(Transaction.created_at >= start)
    if end:
        query = query.filter(Transaction.created_at < end)
    return query


def _sales_stats(store_id: int, start: datetime | None, end: datetime | None) -> tuple[int, int]:
    count, revenue = (
        _completed_between(store_id, start, end)
        .with_entities(func.count(Transaction.id), func.coalesce(func.sum(Transaction.total_cents), 0))
        .one()
    )
    return int(count or 0), int(revenue or 0)


def _top_products(store_id: int, start: datetime, end: datetime) -> list[dict]:
    rows = (
        db.session.query(
            Product.id,
            Product.name,
            func.sum(TransactionItem.quantity).label("total_sold"),
            func.sum(TransactionItem.total_cents).label("total_revenue_cents"),
        )
        .join(TransactionItem, TransactionItem.product_id == Product.id)
        .join(Transaction, Transaction.id == TransactionItem.transaction_id)
        .filter(
            Transaction.store_id == store_id,
            Transaction.status == "completed",
            Transaction.created_at >= start,
            Transaction.created_at < end,
        )
        .group_by(Product.id, Product.name)
        .order_by(func.sum(TransactionItem.quantity).desc(), Product.name.asc())
        .limit(TOP_PRODUCTS_LIMIT)
        .all()
    )
    return [
        {
            "product_id": row.id,
            "name": row.name,
            "total_sold": int(row.total_sold or 0),
            "total_revenue_cents": int(row.total_revenue_cents or 0),
        }
        for row in rows
    ]


def store_analytics(store_id: int, now: datetime | None = None) -> dict:
    """
    Dashboard payload: today / this month, catalog counts, top sellers of
    the month and the latest transactions. Day and month boundaries are UTC.
    """
    now = now or utcnow()
    today = start_of_day(now)
    tomorrow = today + timedelta(days=1)
    month_start = start_of_month(now)
    month_end = start_of_next_month(now)

    today_count, today_revenue = _sales_stats(store_id, today, tomorrow)
    month_count, month_revenue = _sales_stats(store_id, month_start, month_end)

    products = db.session.query(Product).filter(
        Product.store_id == store_id,
        Product.is_active.is_(True),
    )
    total_products = products.count()
    low_stock_count = products.filter(
        Product.track_inventory.is_(True),
        Product.min_stock > 0,
        Product.stock <= Product.min_stock,
    ).count()

    recent = (
        db.session.query(Transaction)
        .filter(Transaction.store_id == store_id)
        .order_by(Transaction.created_at.desc(), Transaction.id.desc())
        .limit(RECENT_TRANSACTIONS_LIMIT)
        .all()
    )

    return {
        "today_stats": {
            "transaction_count": today_count,
            "total_revenue_cents": today_revenue,
            "avg_transaction_value_cents": _average(today_revenue, today_count),
        },
        "month_stats": {
            "transaction_count": month_count,
            "total_revenue_cents": month_revenue,
        },
        "inventory": {
            "total_products": total_products,
            "low_stock_count": low_stock_count,
        },
        "top_products": _top_products(store_id, month_start, month_end),
        "recent_transactions": [
            {
                "id": t.id,
                "transaction_number": t.transaction_number,
                "total_cents": t.total_cents,
                "status": t.status,
                "payment_method": t.payment_method,
                "created_at": to_utc_z(t.created_at),
            }
            for t in recent
        ],
    }


def sales_summary(store_id: int, start: datetime | None = None, end: datetime | None = None) -> dict:
    """Completed sales in [start, end): revenue, count, items sold, average order."""
    if start and end and end <= start:
        raise ValidationError("end must be after start")

    count, revenue = _sales_stats(store_id, start, end)
    discount, tax = (
        _completed_between(store_id, start, end)
        .with_entities(
            func.coalesce(func.sum(Transaction.discount_cents), 0),
            func.coalesce(func.sum(Transaction.tax_cents), 0),
        )
        .one()
    )

    items_query = (
        db.session.query(func.coalesce(func.sum(TransactionItem.quantity), 0))
        .join(Transaction, Transaction.id == TransactionItem.transaction_id)
        .filter(Transaction.store_id == store_id, Transaction.status == "completed")
    )
    if start:
        items_query = items_query.filter(Transaction.created_at >= start)
    if end:
        items_query = items_query.filter(Transaction.created_at < end)

    return {
        "start": to_utc_z(start) if start else None,
        "end": to_utc_z(end) if end else None,
        "total_revenue_cents": revenue,
        "transaction_count": count,
        "items_sold": int(items_query.scalar() or 0),
        "average_order_value_cents": _average(revenue, count),
        "total_discount_cents": int(discount or 0),
        "total_tax_cents": int(tax or 0),
    }


def daily_sales(store_id: int, days: int = 7, now: datetime | None = None) -> list[dict]:
    """
    Revenue and transaction count per UTC day for the last `days` days,
    oldest first, zero-filled. Bucketing happens here, not in SQL, so the
    query is the same on every database.
    """
    if isinstance(days, bool) or not isinstance(days, int) or not 1 <= days <= MAX_DAILY_DAYS:
        raise ValidationError(f"days must be between 1 and {MAX_DAILY_DAYS}")

    now = now or utcnow()
    end = start_of_day(now) + timedelta(days=1)
    start = end - timedelta(days=days)

    buckets = {
        (start + timedelta(days=i)).date(): {"revenue_cents": 0, "transaction_count": 0}
        for i in range(days)
    }

    rows = (
        _completed_between(store_id, start, end)
        .with_entities(Transaction.created_at, Transaction.total_cents)
        .all()
    )
    for created_at, total_cents in rows:
        bucket = buckets.get(created_at.date())
        if bucket is None:
            continue
        bucket["revenue_cents"] += total_cents
        bucket["transaction_count"] += 1

    return [
        {"date": day.isoformat(), **values}
        for day, values in sorted(buckets.items())
    ]
