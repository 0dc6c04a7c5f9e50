from ..extensions import db
from .user import Profile, has_role
from .course import CourseGroup, Course, CourseSession, CourseLeader
from .enrollment import Enrollment, AttendanceRecord
from .requests import LeaveRequest, MakeupRequest, TransferRequest
from .cards import CardOrder, CardTransaction
from .config import SystemConfig

__all__ = [
    "Profile", "has_role", "CourseGroup", "Course", "CourseSession", "CourseLeader",
    "Enrollment", "AttendanceRecord", "LeaveRequest", "MakeupRequest",
    "TransferRequest", "CardOrder", "CardTransaction", "SystemConfig",
]
