"""Routes package - Blueprint registration."""
from changedesk.routes.main import main_bp
from changedesk.routes.auth import auth_bp
from changedesk.routes.requests import requests_bp
from changedesk.routes.review import review_bp
from changedesk.routes.admin import admin_bp
from changedesk.routes.notifications import notifications_bp


def register_blueprints(app):
    """Register all blueprints with the Flask app."""
    app.register_blueprint(main_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(requests_bp)
    app.register_blueprint(review_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(notifications_bp)
