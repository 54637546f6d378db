"""Main routes - Landing page, language switching, health check."""
from flask import Blueprint, render_template, request, redirect, make_response, jsonify, current_app
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from changedesk.models import db
from changedesk.routes.auth import current_identity, dashboard_for
from changedesk.services.resilience import resilient_call

main_bp = Blueprint('main', __name__)


@main_bp.route('/')
def index():
    identity = current_identity()
    if identity is not None:
        return redirect(dashboard_for(identity))
    return render_template('index.html')


@main_bp.route('/set_language/<lang>')
def set_language(lang):
    if lang not in ['en', 'es']:
        lang = 'en'
    resp = make_response(redirect(request.referrer or '/'))
    resp.set_cookie('babel_translation', lang)
    return resp


def _ping_database():
    db.session.execute(text('SELECT 1'))
    return {'ok': True}


@main_bp.route('/health')
def health():
    """Is the backend reachable? Answers within BACKEND_TIMEOUT either way."""
    outcome = resilient_call(
        _ping_database,
        timeout=current_app.config['BACKEND_TIMEOUT'],
        fallback=lambda: {'ok': False},
        fallback_on=(SQLAlchemyError,),
    )
    result = dict(outcome.value)
    if outcome.degraded:
        result['message'] = 'Backend timed out.' if outcome.reason == 'timeout' else 'Backend is unreachable.'
    return jsonify(result), 200 if result['ok'] else 503
