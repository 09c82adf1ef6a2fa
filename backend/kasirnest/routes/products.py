# Overview: Flask API routes for products operations; parses input and returns JSON responses.

# backend/kasirnest/routes/products.py
"""
Product catalog and stock routes.

TENANCY: every route works inside g.store_id (set by @require_auth from the
session). Ids from another store are 404.

SECURITY: all routes require authentication and an active membership.
- Read operations: any store role
- Write operations: owner, admin or manager
"""
from flask import Blueprint, request, g

from ..services import inventory_service, products_service
from ..models import Product
from ..validation import (
    ModelValidationPolicy,
    ValidationError,
    parse_int,
    validate_payload,
)
from ..decorators import require_auth, require_store, require_store_role
from ..responses import DOMAIN_ERRORS, internal_error, service_error, success

CATALOG_ROLES = ("owner", "admin", "manager")

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields=products_service.PRODUCT_MUTABLE_FIELDS | {"stock"},
    required_on_create={"name", "price_cents"},
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


def _split_category(payload: dict) -> tuple[dict, bool, object]:
    """`category` is a name, not a column: pull it out before column validation."""
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    payload = dict(payload)
    has_category = "category" in payload
    category = payload.pop("category", None)
    if category is not None and not isinstance(category, str):
        raise ValidationError("category must be a string")
    return payload, has_category, category


def _flag(name: str) -> bool:
    return (request.args.get(name) or "").strip().lower() in {"1", "true", "yes"}


@products_bp.get("")
@require_auth
@require_store
def list_products():
    """
    List products of the active store, newest first.

    Query params:
    - category: category name filter
    - search: matches name, SKU or barcode
    - include_inactive: also return soft-deleted products
    """
    try:
        products = products_service.list_products(
            g.store_id,
            include_inactive=_flag("include_inactive"),
            category=request.args.get("category") or None,
            search=request.args.get("search") or None,
        )
        return success([p.to_dict() for p in products])
    except Exception:
        return internal_error("Failed to get products")


@products_bp.get("/low-stock")
@require_auth
@require_store
def list_low_stock():
    try:
        products = inventory_service.list_low_stock(g.store_id)
        return success([p.to_dict() for p in products])
    except Exception:
        return internal_error("Failed to get low stock products")


@products_bp.get("/categories")
@require_auth
@require_store
def list_categories():
    try:
        return success([c.to_dict() for c in products_service.list_categories(g.store_id)])
    except Exception:
        return internal_error("Failed to get categories")


@products_bp.get("/<int:product_id>")
@require_auth
@require_store
def get_product(product_id: int):
    try:
        return success(products_service.get_product(g.store_id, product_id).to_dict())
    except DOMAIN_ERRORS as e:
        return service_error(e)
    except Exception:
        return internal_error("Failed to get product")


@products_bp.get("/<int:product_id>/movements")
@require_auth
@require_store
def list_movements(product_id: int):
    """Stock ledger of one product, newest first (?limit=, max 500)."""
    try:
        limit = request.args.get("limit")
        limit = 100 if limit is None else parse_int(limit, "limit", minimum=1)
        movements = inventory_service.list_stock_movements(g.store_id, product_id, limit=limit)
        return success([m.to_dict() for m in movements])
    except DOMAIN_ERRORS as e:
        return service_error(e)
    except Exception:
        return internal_error("Failed to get stock movements")


@products_bp.post("")
@require_auth
@require_store
@require_store_role(*CATALOG_ROLES)
def create_product_route():
    """
    Create a product.

    Body: name, price_cents (required); category (name), description,
    cost_cents, sku, barcode, stock, min_stock, max_stock, unit_of_measure,
    tags, images, track_inventory, allow_negative_stock.
    """
    try:
        payload, _, category = _split_category(request.get_json(silent=True) or {})
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
        product = products_service.create_product(
            g.store_id,
            patch,
            category_name=category,
            user_id=g.current_user.id,
        )
        return success(product.to_dict(), 201, message="Product created successfully")
    except DOMAIN_ERRORS as e:
        return service_error(e)
    except Exception:
        return internal_error("Failed to create product")


@products_bp.put("/<int:product_id>")
@require_auth
@require_store
@require_store_role(*CATALOG_ROLES)
def update_product_route(product_id: int):
    """Partial update; a changed `stock` is recorded as an adjustment movement."""
    try:
        payload, has_category, category = _split_category(request.get_json(silent=True) or {})
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
        if not patch and not has_category:
            raise ValidationError("No fields to update")

        kwargs = {"category_name": category} if has_category else {}
        product = products_service.update_product(
            g.store_id,
            product_id,
            patch,
            user_id=g.current_user.id,
            **kwargs,
        )
        return success(product.to_dict(), message="Product updated successfully")
    except DOMAIN_ERRORS as e:
        return service_error(e)
    except Exception:
        return internal_error("Failed to update product")


@products_bp.put("/<int:product_id>/stock")
@require_auth
@require_store
@require_store_role(*CATALOG_ROLES)
def update_stock_route(product_id: int):
    """
    Body: either {"stock": n} (absolute) or {"quantity_delta": n} (relative),
    plus optional "notes".
    """
    data = request.get_json(silent=True) or {}
    try:
        notes = data.get("notes")
        if notes is not None and not isinstance(notes, str):
            raise ValidationError("notes must be a string")

        if ("stock" in data) == ("quantity_delta" in data):
            raise ValidationError("Provide exactly one of stock or quantity_delta")

        if "stock" in data:
            product = inventory_service.set_stock(
                g.store_id,
                product_id,
                parse_int(data["stock"], "stock"),
                notes=notes,
                user_id=g.current_user.id,
            )
        else:
            product = inventory_service.adjust_stock(
                g.store_id,
                product_id,
                parse_int(data["quantity_delta"], "quantity_delta"),
                notes=notes,
                user_id=g.current_user.id,
            )
        return success(product.to_dict(), message="Stock updated successfully")
    except DOMAIN_ERRORS as e:
        return service_error(e)
    except Exception:
        return internal_error("Failed to update stock")


@products_bp.delete("/<int:product_id>")
@require_auth
@require_store
@require_store_role(*CATALOG_ROLES)
def delete_product_route(product_id: int):
    """Soft delete (is_active = false)."""
    try:
        products_service.delete_product(g.store_id, product_id)
        return success(None, message="Product deleted successfully")
    except DOMAIN_ERRORS as e:
        return service_error(e)
    except Exception:
        return internal_error("Failed to delete product")
