from datetime import datetime
from ..extensions import db

class Enrollment(db.Model):
    __tablename__ = "enrollment"
    id = db.Column(db.Integer, primary_key=True)
    course_id = db.Column(db.Integer, db.ForeignKey("course.id"), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("profile.id"), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="enrolled")
    type = db.Column(db.String(8), nullable=False, default="full")
    session_id = db.Column(db.Integer, db.ForeignKey("course_session.id"))  # single only
    waitlist_position = db.Column(db.Integer)
    source = db.Column(db.String(16), nullable=False, default="self")
    enrolled_at = db.Column(db.DateTime, nullable=False, default=datetime.now)
    cancelled_at = db.Column(db.DateTime)
    __table_args__ = (
        db.UniqueConstraint("course_id", "user_id", "session_id", name="uq_enrollment_slot"),
    )

    course = db.relationship("Course", back_populates="enrollments")
    user = db.relationship("Profile", back_populates="enrollments", foreign_keys=[user_id])
    session = db.relationship("CourseSession")

class AttendanceRecord(db.Model):
    __tablename__ = "attendance_record"
    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey("course_session.id"), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("profile.id"), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="unmarked")
    note = db.Column(db.String(255))
    marked_by_id = db.Column(db.Integer, db.ForeignKey("profile.id"))
    marked_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.now)
    __table_args__ = (
        db.UniqueConstraint("session_id", "user_id", name="uq_attendance_session_user"),
    )

    session = db.relationship("CourseSession", back_populates="attendance")
    user = db.relationship("Profile", foreign_keys=[user_id])
