# Overview: Flask API routes for stores operations; profile, settings and dashboards.

# backend/kasirnest/routes/stores.py
from flask import Blueprint, request, g

from ..services import reporting_service, store_service
from ..validation import ValidationError, parse_int
from ..decorators import require_auth, require_store, require_store_role
from ..responses import DOMAIN_ERRORS, internal_error, service_error, success
from kasirnest.time_utils import parse_iso_datetime

SETTINGS_ROLES = ("owner", "admin")

stores_bp = Blueprint("stores", __name__, url_prefix="/api/stores")


@stores_bp.get("")
@require_auth
@require_store
def get_store():
    """Active store profile with settings (defaults merged in)."""
    try:
        return success(store_service.get_store(g.store_id).to_dict())
    except DOMAIN_ERRORS as e:
        return service_error(e)
    except Exception:
        return internal_error("Failed to get store information")


@stores_bp.get("/mine")
@require_auth
def my_stores():
    """Every store the caller is an active member of, with the role held."""
    try:
        return success(store_service.list_user_stores(g.current_user.id))
    except Exception:
        return internal_error("Failed to get stores")


@stores_bp.put("/settings")
@require_auth
@require_store
@require_store_role(*SETTINGS_ROLES)
def update_settings():
    """
    Body (any subset): name, description, address, phone, email, logo_url,
    currency, tax_rate, theme, features, custom_fields.
    """
    try:
        store = store_service.update_store_settings(g.store_id, request.get_json(silent=True) or {})
        return success(store.to_dict(), message="Store settings updated successfully")
    except DOMAIN_ERRORS as e:
        return service_error(e)
    except Exception:
        return internal_error("Failed to update store settings")


@stores_bp.get("/analytics")
@require_auth
@require_store
def analytics():
    try:
        return success(reporting_service.store_analytics(g.store_id))
    except Exception:
        return internal_error("Failed to get store analytics")


@stores_bp.get("/analytics/summary")
@require_auth
@require_store
def analytics_summary():
    """?start=&end= (ISO-8601, end exclusive); completed sales only."""
    try:
        try:
            start = parse_iso_datetime(request.args.get("start"))
            end = parse_iso_datetime(request.args.get("end"))
        except ValueError:
            raise ValidationError("start and end must be ISO-8601 datetimes")
        return success(reporting_service.sales_summary(g.store_id, start, end))
    except DOMAIN_ERRORS as e:
        return service_error(e)
    except Exception:
        return internal_error("Failed to get sales summary")


@stores_bp.get("/analytics/daily")
@require_auth
@require_store
def analytics_daily():
    """?days= (1-90, default 7)."""
    try:
        days = request.args.get("days")
        days = 7 if days is None else parse_int(days, "days")
        return success(reporting_service.daily_sales(g.store_id, days))
    except DOMAIN_ERRORS as e:
        return service_error(e)
    except Exception:
        return internal_error("Failed to get daily sales")
