from flask import Blueprint

admin_bp = Blueprint('admin', __name__)

# Import route modules to register their endpoints
from . import disputes     # noqa: E402,F401
from . import withdrawals  # noqa: E402,F401
from . import audit_logs   # noqa: E402,F401
