from .db import db
from .user import User, Role, user_roles
from .audit_log import AuditLog
from .session import Session
from .place import Place
from .booking import Booking
from .transaction import Transaction
from .payment_event import PaymentEvent
