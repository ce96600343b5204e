from .db import db, atomic
from .user import User, Role, user_roles
from .auth_session import AuthSession
from .audit_log import AuditLog
from .slot import TimeSlot, SlotStatus
from .course import Course
from .booking_request import BookingRequest, RequestStatus, PaymentStatus
from .payment import PaymentRecord, PaymentRecordStatus
from .tutoring_session import TutoringSession, SessionStatus
from .attendance import Attendance
from .earning import EarningRecord, EarningStatus
