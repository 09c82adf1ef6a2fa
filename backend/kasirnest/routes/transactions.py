# Overview: Flask API routes for sales transactions; parses input and returns JSON responses.

# backend/kasirnest/routes/transactions.py
"""
Sales transaction routes.

POST /api/transactions runs the checkout (transaction_service.create_sale_transaction)
as one atomic unit. Cancel and refund reverse a completed sale's stock effects.
"""
from flask import Blueprint, request, g

from ..services import transaction_service
from ..validation import ValidationError, parse_int, parse_tax_rate_bps
from ..decorators import require_auth, require_store, require_store_role
from ..responses import DOMAIN_ERRORS, internal_error, service_error, success
from kasirnest.time_utils import parse_iso_datetime, to_utc_z

REVERSAL_ROLES = ("owner", "admin", "manager")

transactions_bp = Blueprint("transactions", __name__, url_prefix="/api/transactions")


def _query_datetime(name: str):
    try:
        return parse_iso_datetime(request.args.get(name))
    except ValueError:
        raise ValidationError(f"{name} must be an ISO-8601 datetime")


@transactions_bp.get("")
@require_auth
@require_store
def list_transactions():
    """
    Query params:
    - status: pending|completed|cancelled|refunded
    - start, end: ISO-8601 range on created_at (end exclusive)
    - limit: default 100, max 500
    """
    try:
        limit = request.args.get("limit")
        transactions = transaction_service.list_transactions(
            g.store_id,
            status=request.args.get("status") or None,
            start=_query_datetime("start"),
            end=_query_datetime("end"),
            limit=transaction_service.DEFAULT_LIST_LIMIT if limit is None else parse_int(limit, "limit", minimum=1),
        )
        return success([t.to_dict() for t in transactions])
    except DOMAIN_ERRORS as e:
        return service_error(e)
    except Exception:
        return internal_error("Failed to get transactions")


@transactions_bp.get("/<int:transaction_id>")
@require_auth
@require_store
def get_transaction(transaction_id: int):
    try:
        trx = transaction_service.get_transaction(g.store_id, transaction_id)
        return success(transaction_service.transaction_detail(trx))
    except DOMAIN_ERRORS as e:
        return service_error(e)
    except Exception:
        return internal_error("Failed to get transaction")


@transactions_bp.post("")
@require_auth
@require_store
def create_transaction():
    """
    Record a sale.

    Body:
    - items: [{product_id, quantity, unit_price_cents?, discount_cents?}] (required)
    - payment_method: cash|card|digital|credit (required)
    - discount_cents: cart-level discount, default 0
    - tax_rate: fraction (0.1 = 10%), default the store's rate
    - customer: {name?, email?, phone?}
    - amount_paid_cents: tendered amount, default the total
    - notes
    """
    data = request.get_json(silent=True)
    try:
        if not isinstance(data, dict):
            raise ValidationError("Invalid JSON payload")

        tax_rate = data.get("tax_rate")
        trx = transaction_service.create_sale_transaction(
            g.store_id,
            data.get("items"),
            data.get("payment_method"),
            discount_cents=0 if data.get("discount_cents") is None else data["discount_cents"],
            tax_rate_bps=None if tax_rate is None else parse_tax_rate_bps(tax_rate),
            customer=data.get("customer"),
            amount_paid_cents=data.get("amount_paid_cents"),
            notes=data.get("notes"),
            user_id=g.current_user.id,
        )
        return success({
            "id": trx.id,
            "transaction_number": trx.transaction_number,
            "subtotal_cents": trx.subtotal_cents,
            "discount_cents": trx.discount_cents,
            "tax_cents": trx.tax_cents,
            "total_cents": trx.total_cents,
            "amount_paid_cents": trx.amount_paid_cents,
            "change_cents": trx.change_cents,
            "status": trx.status,
            "payment_status": trx.payment_status,
            "created_at": to_utc_z(trx.created_at),
        }, 201, message="Transaction completed successfully")
    except DOMAIN_ERRORS as e:
        return service_error(e)
    except Exception:
        return internal_error("Failed to create transaction")


def _reverse(operation, transaction_id: int, message: str):
    data = request.get_json(silent=True) or {}
    try:
        trx = operation(
            g.store_id,
            transaction_id,
            user_id=g.current_user.id,
            reason=data.get("reason"),
        )
        return success(trx.to_dict(), message=message)
    except DOMAIN_ERRORS as e:
        return service_error(e)
    except Exception:
        return internal_error("Failed to reverse transaction")


@transactions_bp.post("/<int:transaction_id>/cancel")
@require_auth
@require_store
@require_store_role(*REVERSAL_ROLES)
def cancel_transaction(transaction_id: int):
    return _reverse(transaction_service.cancel_transaction, transaction_id, "Transaction cancelled")


@transactions_bp.post("/<int:transaction_id>/refund")
@require_auth
@require_store
@require_store_role(*REVERSAL_ROLES)
def refund_transaction(transaction_id: int):
    return _reverse(transaction_service.refund_transaction, transaction_id, "Transaction refunded")
