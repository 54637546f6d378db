"""Authentication routes and decorators."""
import logging
from functools import wraps

from authlib.integrations.base_client import OAuthError
from flask import Blueprint, redirect, url_for, request, render_template, flash, abort, g, jsonify, session
from flask_babel import gettext as _

from changedesk.models import db, User
from changedesk.services.session_store import get_session_store

logger = logging.getLogger(__name__)

auth_bp = Blueprint('auth', __name__)


def current_identity():
    ctx = g.get('session_context')
    return ctx.identity if ctx else None


def current_user():
    """The users row behind the session, or None for a provisional identity."""
    identity = current_identity()
    if identity is None or identity.id is None:
        return None
    return db.session.get(User, identity.id)


# ==================== RBAC Decorators (MUST be defined before routes that use them) ====================

def login_required(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if current_identity() is None:
            return redirect(url_for('auth.login'))
        return f(*args, **kwargs)
    return decorated_function


def role_required(roles):
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            identity = current_identity()
            if identity is None:
                return redirect(url_for('auth.login'))
            if identity.role not in roles:
                abort(403)  # Forbidden
            return f(*args, **kwargs)
        return decorated_function
    return decorator


def admin_required(f):
    return role_required(['admin'])(f)


def reviewer_required(f):
    return role_required(['admin', 'reviewer'])(f)


def user_required(f):
    return role_required(['user'])(f)


def flush_session_errors():
    """Move session errors into flash() so the page being rendered shows them."""
    ctx = g.get('session_context')
    if ctx is not None:
        for category, message in ctx.drain_errors():
            flash(message, category)


def dashboard_for(identity):
    if identity.role == 'admin':
        return url_for('admin.dashboard')
    if identity.role == 'reviewer':
        return url_for('review.dashboard')
    return url_for('requests.dashboard')


# ==================== Routes ====================

@auth_bp.route('/login', methods=['GET', 'POST'])
def login():
    """Admin username/password sign-in. Everyone else signs in with Google."""
    if request.method == 'POST':
        username = request.form.get('username', '')
        password = request.form.get('password', '')

        if not username or not password:
            flash(_('Please fill in all fields'), 'error')
            return render_template('auth/login.html'), 400

        identity = get_session_store().sign_in_with_password(g.session_context, username, password)
        if identity is not None:
            flash(_('Login successful!'), 'success')
            return redirect(dashboard_for(identity))
        flush_session_errors()
        return render_template('auth/login.html'), 401

    identity = current_identity()
    if identity is not None:
        return redirect(dashboard_for(identity))
    return render_template('auth/login.html')


@auth_bp.route('/login/google')
def login_google():
    redirect_uri = url_for('auth.authorize', _external=True)
    return get_session_store().begin_federated_sign_in(redirect_uri)


@auth_bp.route('/authorize')
def authorize():
    """OAuth callback: the provider reports a completed sign-in."""
    store = get_session_store()
    try:
        provider_session = store.provider.complete_sign_in()
    except OAuthError as exc:
        flash(_('Google sign-in failed'), 'error')
        logger.warning('OAuth callback failed: %s', exc)
        return redirect(url_for('auth.login'))

    identity = store.handle_auth_state_change(g.session_context, provider_session)
    if identity is None:
        return redirect(url_for('auth.login'))
    return redirect(dashboard_for(identity))


@auth_bp.route('/auth/session')
def session_state():
    """Session probe: re-validates the provider session and reports the result."""
    store = get_session_store()
    ctx = g.session_context
    identity = store.probe(ctx)
    return jsonify({
        'loading': ctx.loading,
        'identity': identity.to_session() if identity else None,
        'errors': [message for _category, message in ctx.drain_errors()],
    })


@auth_bp.route('/logout')
def logout():
    ctx = g.pop('session_context', None)
    if ctx is not None:
        get_session_store().sign_out(ctx)
    session.clear()
    return redirect('/')
