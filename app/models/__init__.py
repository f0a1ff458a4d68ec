from .user import User
from .gig import Gig
from .order import Order, OrderStatus, OrderDeliverable
from .payment import Payment
from .review import Review
from .withdrawal import Withdrawal
from .audit import AuditLog, AuditAction
from .notification import Notification, NotificationType
