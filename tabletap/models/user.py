"""User model.

Local mirror of an auth-provider identity. The id is the token's `sub`
claim; credentials live with the auth provider, not here.
"""

import uuid

from tabletap.extensions import db


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    email = db.Column(db.String(255), unique=True, nullable=False)
    full_name = db.Column(db.String(255))
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    stripe_customers = db.relationship(
        "StripeCustomer", back_populates="user", lazy="dynamic"
    )

    def __repr__(self):
        return f"<User {self.email}>"
