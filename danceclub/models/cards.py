from datetime import datetime
from ..extensions import db

class CardOrder(db.Model):
    __tablename__ = "card_order"
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("profile.id"), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Integer, nullable=False)       # NTD per card
    total_amount = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(16), nullable=False, default="pending")
    remittance_account_last5 = db.Column(db.String(5))
    remittance_date = db.Column(db.Date)
    remittance_note = db.Column(db.String(255))
    confirmed_by_id = db.Column(db.Integer, db.ForeignKey("profile.id"))
    confirmed_at = db.Column(db.DateTime)
    expires_at = db.Column(db.Date)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.now)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_card_order_quantity_positive"),
    )

    user = db.relationship("Profile", foreign_keys=[user_id])

class CardTransaction(db.Model):
    __tablename__ = "card_transaction"
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("profile.id"), nullable=False)
    type = db.Column(db.String(16), nullable=False)
    amount = db.Column(db.Integer, nullable=False)           # positive = add, negative = deduct
    balance_after = db.Column(db.Integer, nullable=False)
    order_id = db.Column(db.Integer, db.ForeignKey("card_order.id"))
    enrollment_id = db.Column(db.Integer, db.ForeignKey("enrollment.id"))
    note = db.Column(db.String(255))
    created_by_id = db.Column(db.Integer, db.ForeignKey("profile.id"))
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.now)

    user = db.relationship("Profile", foreign_keys=[user_id])
    order = db.relationship("CardOrder")
