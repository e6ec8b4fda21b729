from __future__ import annotations

from ..extensions import db
from ..time_utils import utcnow, to_utc_z


class StoreSetting(db.Model):
    """
    Key-value store settings editable from the admin panel.

    A stored value overrides the environment default for the same key
    (see services.settings_service for the precedence order).
    """
    __tablename__ = "store_settings"
    __table_args__ = (
        db.UniqueConstraint("key", name="uq_store_settings_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    key = db.Column(db.String(128), nullable=False)
    value = db.Column(db.Text, nullable=True)

    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self, *, mask: bool = False):
        return {
            "id": self.id,
            "key": self.key,
            "value": ("********" if mask and self.value else self.value),
            "updated_at": to_utc_z(self.updated_at),
        }
