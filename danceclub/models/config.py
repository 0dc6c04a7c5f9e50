from datetime import datetime
from ..extensions import db

class SystemConfig(db.Model):
    __tablename__ = "system_config"
    key = db.Column(db.String(64), primary_key=True)
    value = db.Column(db.Text, nullable=False, default="")
    description = db.Column(db.String(255))
    updated_by_id = db.Column(db.Integer, db.ForeignKey("profile.id"))
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)
