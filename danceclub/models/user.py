from datetime import date, datetime
from flask_login import UserMixin
from werkzeug.security import check_password_hash, generate_password_hash
from ..extensions import db
from ..constants import ROLE_RANK

def has_role(role, required):
    return ROLE_RANK.get(role, 0) >= ROLE_RANK[required]

class Profile(UserMixin, db.Model):
    __tablename__ = "profile"
    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False)
    password_hash = db.Column(db.String(256), nullable=False)
    name = db.Column(db.String(64), nullable=False)
    employee_id = db.Column(db.String(32))
    role = db.Column(db.String(16), nullable=False, default="guest")
    member_valid_until = db.Column(db.Date)
    card_balance = db.Column(db.Integer, nullable=False, default=0)  # denormalized ledger total
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.now)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)

    enrollments = db.relationship("Enrollment", back_populates="user",
                                  foreign_keys="Enrollment.user_id")
    leaderships = db.relationship("CourseLeader", back_populates="user",
                                  foreign_keys="CourseLeader.user_id",
                                  cascade="all, delete-orphan")

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return check_password_hash(self.password_hash, password)

    def has_role(self, required):
        return has_role(self.role, required)

    @property
    def is_admin(self):
        return self.role == "admin"

    @property
    def is_leader(self):
        return self.role in ("leader", "admin")

    @property
    def is_member(self):
        return self.role in ("member", "leader", "admin")

    def is_active_member(self, today=None):
        """Members with no expiry date, or one not yet passed, pay the member price."""
        if self.role == "guest":
            return False
        if self.member_valid_until is None:
            return True
        return self.member_valid_until >= (today or date.today())

    def leads(self, course_id):
        return any(l.course_id == course_id for l in self.leaderships)
