"""
ChangeDesk - Application Factory
"""
import logging
import os

import click
from flask import Flask, request, session, g, flash
from werkzeug.security import generate_password_hash

from changedesk.extensions import db, babel
from changedesk.routes import register_blueprints
from changedesk.services.allocator import ReviewerAllocator
from changedesk.services.identity import IdentityResolver, normalize_email
from changedesk.services.identity_provider import GoogleIdentityProvider, setup_oauth
from changedesk.services.resilience import ResilientExecutor
from changedesk.services.session_store import SessionStore
from changedesk.services.storage import AttachmentStorage
from config.settings import config


def get_locale():
    """Determine the best locale for the user."""
    lang = request.cookies.get('babel_translation')
    if lang:
        return lang
    return request.accept_languages.best_match(['en', 'es'])


def create_app(config_name=None, identity_provider=None, **overrides):
    """Application Factory."""
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'development')

    app = Flask(__name__)
    app.config.from_object(config.get(config_name, config['default']))
    app.config.update(overrides)

    logging.basicConfig(
        level=app.config['LOG_LEVEL'],
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )

    # Initialize extensions
    db.init_app(app)
    babel.init_app(app, locale_selector=get_locale)
    setup_oauth(app)

    # Services
    executor = ResilientExecutor(
        max_workers=app.config['RESILIENT_WORKERS'],
        default_timeout=app.config['BACKEND_TIMEOUT'],
    )
    provider = identity_provider or GoogleIdentityProvider(app.config.get('GOOGLE_REVOKE_URL'))
    app.extensions['resilient_executor'] = executor
    app.extensions['identity_provider'] = provider
    app.extensions['reviewer_allocator'] = ReviewerAllocator()
    app.extensions['attachment_storage'] = AttachmentStorage(app.config['UPLOAD_FOLDER'])
    app.extensions['session_store'] = SessionStore(
        resolver=IdentityResolver.from_config(app.config),
        provider=provider,
        executor=executor,
        timeout=app.config['BACKEND_TIMEOUT'],
    )

    register_session_hooks(app)

    # Context processor for templates
    @app.context_processor
    def inject_conf_var():
        ctx = g.get('session_context')
        return dict(get_locale=get_locale, current_identity=ctx.identity if ctx else None)

    # Register blueprints
    register_blueprints(app)

    # CLI Commands
    register_cli_commands(app)

    return app


def register_session_hooks(app):
    """Bind a re-validated SessionContext to each request and mirror it back into the cookie."""
    store = app.extensions['session_store']

    @app.before_request
    def load_session_context():
        g.session_context = store.load(session)
        store.refresh(g.session_context)

    @app.after_request
    def save_session_context(response):
        ctx = g.pop('session_context', None)
        if ctx is not None:
            for category, message in ctx.drain_errors():
                flash(message, category)
            store.save(ctx, session)
        return response


def register_cli_commands(app):
    """Register CLI commands."""

    @app.cli.command("init-db")
    def init_db_command():
        """Creates database tables."""
        db.create_all()
        print("Initialized the database.")

    @app.cli.command("create-admin")
    @click.argument("username")
    @click.argument("email")
    @click.option("--password", prompt=True, hide_input=True, confirmation_prompt=True)
    @click.option("--name", default=None, help="Display name.")
    def create_admin_command(username, email, password, name):
        """Provisions an admin user with a username/password credential."""
        from changedesk.models import User, AdminCredential
        email = normalize_email(email)
        username = username.strip().lower()
        if AdminCredential.query.filter_by(username=username).first():
            print(f"Credential {username} already exists.")
            return
        user = User.query.filter_by(email=email).first()
        if user is None:
            user = User(email=email, display_name=name or username, role='admin', active=True)
            db.session.add(user)
            db.session.flush()
        else:
            user.role = 'admin'
        db.session.add(AdminCredential(
            username=username,
            password_hash=generate_password_hash(password),
            user_id=user.id,
        ))
        db.session.commit()
        print(f"Admin {username} ({email}) created.")
