"""User dashboard - submitting and managing one's own change requests."""
from flask import Blueprint, render_template, request, redirect, url_for, flash, abort, current_app, send_from_directory
from flask_babel import gettext as _

from changedesk.models import ChangeRequest, PRIORITIES, STATUSES
from changedesk.routes.auth import user_required, current_identity, current_user
from changedesk.services import request_store
from changedesk.services.request_store import ValidationError

requests_bp = Blueprint('requests', __name__)


def _own_request_or_404(req_id):
    req = ChangeRequest.query.get_or_404(req_id)
    if req.author_id != current_identity().id:
        abort(403)
    return req


def _signed_in_user():
    user = current_user()
    if user is None:
        flash(_('Your profile could not be loaded yet. Please sign in again.'), 'warning')
    return user


@requests_bp.route('/requests')
@user_required
def dashboard():
    identity = current_identity()
    status_filter = request.args.get('status', 'all')

    if identity.id is None:
        flash(_('Your profile could not be loaded yet. Please sign in again.'), 'warning')
        requests = []
    else:
        outcome = request_store.load_for_dashboard(
            lambda: [r.to_dict() for r in request_store.list_requests(author_id=identity.id)]
        )
        if outcome.degraded:
            flash(_('Data load timed out. Check the backend connection.'), 'error')
        requests = outcome.value

    stats = request_store.request_stats(requests)
    if status_filter != 'all':
        requests = [r for r in requests if r['status'] == status_filter]
    return render_template(
        'requests/dashboard.html', requests=requests, stats=stats,
        status_filter=status_filter, priorities=PRIORITIES, statuses=STATUSES
    )


@requests_bp.route('/requests', methods=['POST'])
@user_required
def create_request():
    user = _signed_in_user()
    if user is None:
        return redirect(url_for('requests.dashboard'))

    storage = current_app.extensions['attachment_storage']
    try:
        request_store.validate_request_fields(
            request.form.get('title'), request.form.get('description'), request.form.get('priority', 'medium')
        )
        attachment_ref = storage.save(request.files.get('attachment'))
        request_store.create_change_request(
            user,
            request.form.get('title'),
            request.form.get('description'),
            request.form.get('priority', 'medium'),
            attachment_ref=attachment_ref,
        )
    except ValidationError as exc:
        flash(str(exc), 'error')
        return redirect(url_for('requests.dashboard'))

    flash(_('Change request submitted successfully!'), 'success')
    return redirect(url_for('requests.dashboard'))


@requests_bp.route('/requests/<int:req_id>/edit', methods=['POST'])
@user_required
def edit_request(req_id):
    req = _own_request_or_404(req_id)
    storage = current_app.extensions['attachment_storage']
    title = request.form.get('title', req.title)
    description = request.form.get('description', req.description)
    priority = request.form.get('priority', req.priority)
    try:
        request_store.validate_request_fields(title, description, priority)
        request_store.update_change_request(
            req, title, description, priority,
            attachment_ref=storage.save(request.files.get('attachment')),
        )
    except ValidationError as exc:
        flash(str(exc), 'error')
        return redirect(url_for('requests.dashboard'))

    flash(_('Change request updated.'), 'success')
    return redirect(url_for('requests.dashboard'))


@requests_bp.route('/requests/<int:req_id>/withdraw', methods=['POST'])
@user_required
def withdraw_request(req_id):
    req = _own_request_or_404(req_id)
    try:
        request_store.withdraw_change_request(req)
    except ValidationError as exc:
        flash(str(exc), 'error')
        return redirect(url_for('requests.dashboard'))
    flash(_('Change request withdrawn.'), 'success')
    return redirect(url_for('requests.dashboard'))


@requests_bp.route('/attachments/<path:name>')
def attachment(name):
    return send_from_directory(current_app.config['UPLOAD_FOLDER'], name)
