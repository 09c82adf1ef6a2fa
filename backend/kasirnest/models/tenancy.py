from __future__ import annotations

from ..extensions import db
from kasirnest.time_utils import to_utc_z


DEFAULT_THEME = {
    "primaryColor": "#2563eb",
    "secondaryColor": "#64748b",
    "fontFamily": "Inter",
}

DEFAULT_FEATURES = {
    "inventory": True,
    "reports": True,
    "multiUser": False,
    "customFields": False,
}

# Membership roles, strongest first. Login resolves the active store in this order.
STORE_ROLES = ("owner", "admin", "manager", "staff")


class Store(db.Model):
    """
    Tenant boundary: a single shop.

    Products, customers, transactions and memberships all hang off a store.
    Stores are created at signup and are never hard-deleted.

    JSON columns (theme, features, custom fields) are opaque to the database;
    they are merged with defaults when serialized.
    """
    __tablename__ = "stores"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    description = db.Column(db.Text, nullable=True)
    address = db.Column(db.Text, nullable=True)
    phone = db.Column(db.String(64), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    logo_url = db.Column(db.String(512), nullable=True)

    currency = db.Column(db.String(3), nullable=False, default="USD")
    tax_rate_bps = db.Column(db.Integer, nullable=False, default=1000)  # Basis points (1000 = 10%)

    theme_settings = db.Column(db.JSON, nullable=True)
    features = db.Column(db.JSON, nullable=True)
    custom_fields = db.Column(db.JSON, nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Store id={self.id} name={self.name!r}>"

    def settings_dict(self) -> dict:
        return {
            "theme": {**DEFAULT_THEME, **(self.theme_settings or {})},
            "features": {**DEFAULT_FEATURES, **(self.features or {})},
            "currency": self.currency,
            "tax_rate": self.tax_rate_bps / 10000,
            "tax_rate_bps": self.tax_rate_bps,
            "custom_fields": list(self.custom_fields or []),
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "address": self.address,
            "phone": self.phone,
            "email": self.email,
            "logo_url": self.logo_url,
            "settings": self.settings_dict(),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StoreMembership(db.Model):
    """
    (user, store, role) relation granting scoped access.

    Roles are per store, not global: one user may own one shop and be staff
    in another. Removing a member deactivates the row instead of deleting it.
    """
    __tablename__ = "store_memberships"
    __table_args__ = (
        db.UniqueConstraint("user_id", "store_id", name="uq_store_memberships_user_store"),
        db.Index("ix_store_memberships_store_active", "store_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    role = db.Column(db.String(16), nullable=False, default="staff")
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    joined_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    user = db.relationship("User", backref=db.backref("memberships", lazy=True))
    store = db.relationship("Store", backref=db.backref("memberships", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "store_id": self.store_id,
            "role": self.role,
            "is_active": self.is_active,
            "joined_at": to_utc_z(self.joined_at),
        }
