from .admin_routes import admin_bp
from .assets_routes import assets_bp
from .dashboard_routes import dashboard_bp
from .functions_routes import functions_bp
from .main_routes import main_bp
from .maintenance_routes import maintenance_bp
from .notifications_routes import notifications_bp
from .requests_routes import requests_bp

__all__ = [
    "admin_bp",
    "assets_bp",
    "dashboard_bp",
    "functions_bp",
    "main_bp",
    "maintenance_bp",
    "notifications_bp",
    "requests_bp",
]
