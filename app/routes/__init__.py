from .core_routes import core
from .campaign_routes import campaigns
from .donation_routes import donations_bp
from .webhook_routes import webhooks_bp
from .admin_routes import admin_bp

__all__ = ["core", "campaigns", "donations_bp", "webhooks_bp", "admin_bp"]
