from servicehub.extensions import db
from servicehub.models.base import Money, PKType, TimestampMixin


class Wallet(TimestampMixin, db.Model):
    __tablename__ = "wallets"

    id = db.Column(PKType, primary_key=True, autoincrement=True)
    provider_id = db.Column(PKType, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)

    balance = db.Column(Money, nullable=False, default=0)
    pending_balance = db.Column(Money, nullable=False, default=0)
    total_earnings = db.Column(Money, nullable=False, default=0)
    total_withdrawn = db.Column(Money, nullable=False, default=0)
    currency = db.Column(db.String(8), nullable=False, default="XAF")
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    provider = db.relationship("User", back_populates="wallet")

    __table_args__ = (db.CheckConstraint("balance >= 0", name="ck_wallet_balance_non_negative"),)
