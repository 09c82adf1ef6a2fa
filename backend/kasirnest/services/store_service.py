# Overview: Service-layer operations for stores; profile, settings and the caller's store list.

from __future__ import annotations

import re

from flask import current_app

from ..extensions import db
from ..models import Store, StoreMembership
from ..validation import (
    ModelValidationPolicy,
    NotFoundError,
    ValidationError,
    parse_tax_rate_bps,
    validate_payload,
)
from .concurrency import begin_write, lock_for_update, run_with_retry


STORE_POLICY = ModelValidationPolicy(
    writable_fields={"name", "description", "address", "phone", "email", "logo_url", "currency"},
    required_on_create={"name"},
)

# Settings keys that are not plain columns
SETTINGS_KEYS = {"tax_rate", "theme", "features", "custom_fields"}

CURRENCY_RE = re.compile(r"^[A-Z]{3}$")


def get_store(store_id: int) -> Store:
    store = db.session.get(Store, store_id)
    if store is None:
        raise NotFoundError("Store not found")
    return store


def _settings_patch(payload: dict) -> dict:
    patch = {}

    if "tax_rate" in payload:
        patch["tax_rate_bps"] = parse_tax_rate_bps(payload["tax_rate"])

    for key, column in (("theme", "theme_settings"), ("features", "features")):
        if key in payload:
            value = payload[key]
            if value is not None and not isinstance(value, dict):
                raise ValidationError(f"{key} must be an object")
            patch[column] = value

    if "custom_fields" in payload:
        value = payload["custom_fields"]
        if value is not None and not isinstance(value, list):
            raise ValidationError("custom_fields must be a list")
        patch["custom_fields"] = value

    return patch


def update_store_settings(store_id: int, payload: dict) -> Store:
    """
    Patch store profile and settings.

    theme/features are merged key by key over what is stored (null resets
    them to defaults); tax_rate is a fraction (0.1 = 10%) kept as basis points.
    """
    if not isinstance(payload, dict) or not payload:
        raise ValidationError("No fields to update")

    column_payload = {k: v for k, v in payload.items() if k not in SETTINGS_KEYS}
    patch = validate_payload(model=Store, payload=column_payload, policy=STORE_POLICY, partial=True)
    if "currency" in patch:
        currency = (patch["currency"] or "").upper()
        if not CURRENCY_RE.match(currency):
            raise ValidationError("currency must be a 3-letter ISO code")
        patch["currency"] = currency

    patch.update(_settings_patch(payload))

    def _op():
        begin_write()
        store = lock_for_update(db.session.query(Store).filter_by(id=store_id)).first()
        if store is None:
            raise NotFoundError("Store not found")

        for key, value in patch.items():
            if key in ("theme_settings", "features") and value is not None:
                value = {**(getattr(store, key) or {}), **value}
            setattr(store, key, value)

        db.session.commit()
        return store

    store = run_with_retry(_op)
    current_app.logger.info("Store settings updated store_id=%s fields=%s", store_id, sorted(patch))
    return store


def list_user_stores(user_id: int) -> list[dict]:
    """Stores the user is an active member of, with the role held in each."""
    rows = (
        db.session.query(StoreMembership, Store)
        .join(Store, Store.id == StoreMembership.store_id)
        .filter(StoreMembership.user_id == user_id, StoreMembership.is_active.is_(True))
        .order_by(StoreMembership.joined_at.asc(), StoreMembership.id.asc())
        .all()
    )
    result = []
    for membership, store in rows:
        data = store.to_dict()
        data["role"] = membership.role
        data["joined_at"] = membership.to_dict()["joined_at"]
        result.append(data)
    return result
