from datetime import datetime
from ..extensions import db

class CourseGroup(db.Model):
    __tablename__ = "course_group"
    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(128), nullable=False)
    description = db.Column(db.Text)
    region = db.Column(db.String(32), nullable=False, default="HQ")
    period_start = db.Column(db.Date)
    period_end = db.Column(db.Date)
    registration_phase1_start = db.Column(db.DateTime)
    registration_phase1_end = db.Column(db.DateTime)
    created_by_id = db.Column(db.Integer, db.ForeignKey("profile.id"))
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.now)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)

    courses = db.relationship("Course", back_populates="group", order_by="Course.start_time")

class Course(db.Model):
    __tablename__ = "course"
    id = db.Column(db.Integer, primary_key=True)
    group_id = db.Column(db.Integer, db.ForeignKey("course_group.id"), nullable=False)
    name = db.Column(db.String(128), nullable=False)
    description = db.Column(db.Text)
    type = db.Column(db.String(16), nullable=False, default="normal")
    teacher = db.Column(db.String(64), nullable=False, default="")
    room = db.Column(db.String(64), nullable=False, default="")
    start_time = db.Column(db.Time, nullable=False)
    end_time = db.Column(db.Time, nullable=False)
    capacity = db.Column(db.Integer, nullable=False, default=20)
    cards_per_session = db.Column(db.Integer, nullable=False, default=1)
    status = db.Column(db.String(16), nullable=False, default="draft")
    enrollment_start_at = db.Column(db.DateTime)
    enrollment_end_at = db.Column(db.DateTime)
    wiki_url = db.Column(db.String(255))
    created_by_id = db.Column(db.Integer, db.ForeignKey("profile.id"))
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.now)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)
    __table_args__ = (
        db.CheckConstraint("capacity > 0", name="ck_course_capacity_positive"),
        db.CheckConstraint("cards_per_session >= 0", name="ck_course_cards_nonneg"),
    )

    group = db.relationship("CourseGroup", back_populates="courses")
    sessions = db.relationship("CourseSession", back_populates="course",
                               order_by="CourseSession.session_number",
                               cascade="all, delete-orphan")
    leaders = db.relationship("CourseLeader", back_populates="course",
                              cascade="all, delete-orphan")
    enrollments = db.relationship("Enrollment", back_populates="course",
                                  cascade="all, delete-orphan")

class CourseSession(db.Model):
    __tablename__ = "course_session"
    id = db.Column(db.Integer, primary_key=True)
    course_id = db.Column(db.Integer, db.ForeignKey("course.id"), nullable=False)
    session_date = db.Column(db.Date, nullable=False)
    session_number = db.Column(db.Integer, nullable=False)
    is_cancelled = db.Column(db.Boolean, nullable=False, default=False)
    cancel_note = db.Column(db.String(255))
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.now)

    course = db.relationship("Course", back_populates="sessions")
    attendance = db.relationship("AttendanceRecord", back_populates="session")

class CourseLeader(db.Model):
    __tablename__ = "course_leader"
    id = db.Column(db.Integer, primary_key=True)
    course_id = db.Column(db.Integer, db.ForeignKey("course.id"), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("profile.id"), nullable=False)
    assigned_by_id = db.Column(db.Integer, db.ForeignKey("profile.id"))
    assigned_at = db.Column(db.DateTime, nullable=False, default=datetime.now)
    __table_args__ = (
        db.UniqueConstraint("course_id", "user_id", name="uq_course_leader"),
    )

    course = db.relationship("Course", back_populates="leaders")
    user = db.relationship("Profile", back_populates="leaderships", foreign_keys=[user_id])
