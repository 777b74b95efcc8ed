"""
Admin module for the pairchat moderation dashboard.

Provides:
- Flask Blueprint for /admin routes
- AdminUser class for Flask-Login session management
- Admin namespace for real-time SocketIO updates and moderation actions
"""
from flask import Blueprint

admin_bp = Blueprint(
    'admin',
    __name__,
    url_prefix='/admin',
    template_folder='templates',
)


class AdminUser:
    """
    Simple admin user class for Flask-Login.

    Single-user authentication: one shared moderator password.
    """

    def __init__(self, id='admin'):
        self.id = id
        self.is_authenticated = True
        self.is_active = True
        self.is_anonymous = False

    def get_id(self):
        return self.id


from . import routes  # noqa: E402  Import routes after blueprint creation
