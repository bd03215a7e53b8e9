from .admin import bp as admin_bp
from .deliveries import bp as deliveries_bp
from .earnings import bp as earnings_bp
from .events import bp as events_bp
from .menu import bp as menu_bp
from .notifications import bp as notifications_bp
from .orders import bp as orders_bp
from .payments import bp as payments_bp

BLUEPRINTS = (
    menu_bp, orders_bp, payments_bp, deliveries_bp, earnings_bp, notifications_bp, admin_bp, events_bp,
)
