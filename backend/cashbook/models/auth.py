from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class User(db.Model):
    """
    Operator account.

    Identity for audit columns plus what the API needs to resolve a caller:
    a bcrypt password hash for login, the SHA-256 hash of the current API
    token, and the capability strings the user was granted.
    """
    __tablename__ = "users"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), nullable=False, unique=True)
    name = db.Column(db.String(128), nullable=False)
    password_hash = db.Column(db.String(255), nullable=True)
    token_hash = db.Column(db.String(64), nullable=True, unique=True, index=True)
    token_issued_at = db.Column(db.DateTime(timezone=True), nullable=True)
    is_admin = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    permissions = db.relationship(
        "UserPermission",
        backref=db.backref("user", lazy=True),
        lazy=True,
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<User id={self.id} username={self.username!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "name": self.name,
            "is_admin": self.is_admin,
            "is_active": self.is_active,
            "permissions": sorted(p.permission for p in self.permissions),
            "created_at": to_utc_z(self.created_at),
        }


class UserPermission(db.Model):
    """Capability string granted to a user (e.g. "access drawer")."""
    __tablename__ = "user_permissions"
    __table_args__ = (
        db.UniqueConstraint("user_id", "permission", name="uq_user_permissions_user_permission"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    permission = db.Column(db.String(64), nullable=False)
    granted_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
