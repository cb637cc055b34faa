from __future__ import annotations

from ..extensions import db
from backoffice.time_utils import to_utc_z, utcnow
from .enums import UserRole


class User(db.Model):
    """
    Staff account used for attribution (cashier on a sale, opener of a session).

    Credentials live with the upstream auth layer; only the fields the
    back office reads are kept here.
    """
    __tablename__ = "users"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), nullable=False, unique=True, index=True)
    first_name = db.Column(db.String(64), nullable=True)
    last_name = db.Column(db.String(64), nullable=True)

    role = db.Column(db.Enum(UserRole, native_enum=False, length=16), nullable=False, default=UserRole.CASHIER)

    # Home branch (admins may act on any branch)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=True, index=True)

    # Sales rung up by this user are tagged with this subdivision
    assigned_subdivision_id = db.Column(db.Integer, db.ForeignKey("subdivisions.id"), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    branch = db.relationship("Branch", backref=db.backref("users", lazy=True))
    assigned_subdivision = db.relationship("Subdivision")

    @property
    def display_name(self) -> str:
        if self.first_name:
            return f"{self.first_name} {self.last_name or ''}".strip()
        return self.username

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "role": self.role.value,
            "branch_id": self.branch_id,
            "assigned_subdivision_id": self.assigned_subdivision_id,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
