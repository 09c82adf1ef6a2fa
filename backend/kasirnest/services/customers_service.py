# Overview: Service-layer operations for customers; register-side upsert by email.

from __future__ import annotations

from ..extensions import db
from ..models import Customer
from ..validation import ValidationError


def _clean(value, limit: int) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError("Customer fields must be strings")
    value = value.strip()
    if len(value) > limit:
        raise ValidationError(f"Customer field exceeds max length {limit}")
    return value or None


def resolve_customer(store_id: int, data: dict | None) -> Customer | None:
    """
    Resolve the customer attached to a sale, without committing.

    - email given: reuse the (store, email) customer or create it (name required)
    - only a name: always a new customer row
    - nothing: None
    """
    if not data:
        return None
    if not isinstance(data, dict):
        raise ValidationError("customer must be an object")

    name = _clean(data.get("name"), 255)
    email = _clean(data.get("email"), 255)
    phone = _clean(data.get("phone"), 32)
    if email:
        email = email.lower()

    if email:
        existing = db.session.query(Customer).filter_by(store_id=store_id, email=email).first()
        if existing:
            return existing

    if not name:
        if email:
            raise ValidationError("customer.name is required for a new customer")
        return None

    customer = Customer(store_id=store_id, name=name, email=email, phone=phone)
    db.session.add(customer)
    db.session.flush()
    return customer
