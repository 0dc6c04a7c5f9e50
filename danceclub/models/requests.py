from datetime import datetime
from ..extensions import db

class ReviewMixin:
    status = db.Column(db.String(16), nullable=False, default="pending")
    reviewed_at = db.Column(db.DateTime)
    review_note = db.Column(db.String(255))
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.now)

class LeaveRequest(ReviewMixin, db.Model):
    __tablename__ = "leave_request"
    id = db.Column(db.Integer, primary_key=True)
    course_id = db.Column(db.Integer, db.ForeignKey("course.id"), nullable=False)
    session_id = db.Column(db.Integer, db.ForeignKey("course_session.id"), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("profile.id"), nullable=False)
    reason = db.Column(db.String(255))
    reviewed_by_id = db.Column(db.Integer, db.ForeignKey("profile.id"))

    course = db.relationship("Course")
    session = db.relationship("CourseSession")
    user = db.relationship("Profile", foreign_keys=[user_id])

class MakeupRequest(ReviewMixin, db.Model):
    __tablename__ = "makeup_request"
    id = db.Column(db.Integer, primary_key=True)
    original_course_id = db.Column(db.Integer, db.ForeignKey("course.id"), nullable=False)
    original_session_id = db.Column(db.Integer, db.ForeignKey("course_session.id"), nullable=False)
    target_course_id = db.Column(db.Integer, db.ForeignKey("course.id"), nullable=False)
    target_session_id = db.Column(db.Integer, db.ForeignKey("course_session.id"), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("profile.id"), nullable=False)
    quota_used = db.Column(db.Float, nullable=False, default=1.0)
    reviewed_by_id = db.Column(db.Integer, db.ForeignKey("profile.id"))

    original_course = db.relationship("Course", foreign_keys=[original_course_id])
    original_session = db.relationship("CourseSession", foreign_keys=[original_session_id])
    target_course = db.relationship("Course", foreign_keys=[target_course_id])
    target_session = db.relationship("CourseSession", foreign_keys=[target_session_id])
    user = db.relationship("Profile", foreign_keys=[user_id])

class TransferRequest(ReviewMixin, db.Model):
    __tablename__ = "transfer_request"
    id = db.Column(db.Integer, primary_key=True)
    course_id = db.Column(db.Integer, db.ForeignKey("course.id"), nullable=False)
    session_id = db.Column(db.Integer, db.ForeignKey("course_session.id"), nullable=False)
    from_user_id = db.Column(db.Integer, db.ForeignKey("profile.id"), nullable=False)
    to_user_id = db.Column(db.Integer, db.ForeignKey("profile.id"))
    to_user_name = db.Column(db.String(64))   # receiver outside the system
    extra_cards_required = db.Column(db.Integer, nullable=False, default=0)
    reviewed_by_id = db.Column(db.Integer, db.ForeignKey("profile.id"))

    course = db.relationship("Course")
    session = db.relationship("CourseSession")
    from_user = db.relationship("Profile", foreign_keys=[from_user_id])
    to_user = db.relationship("Profile", foreign_keys=[to_user_id])
