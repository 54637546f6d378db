"""Admin routes - dashboard, request oversight and user management."""
from flask import Blueprint, render_template, redirect, url_for, request, flash
from flask_babel import gettext as _

from changedesk.models import ChangeRequest, User, ROLES, STATUSES
from changedesk.routes.auth import admin_required, current_identity
from changedesk.services import request_store
from changedesk.services.request_store import ValidationError

admin_bp = Blueprint('admin', __name__)


def _load_admin_data():
    return {
        'requests': [r.to_dict() for r in request_store.list_requests()],
        'users': [u.to_dict() for u in request_store.list_users()],
    }


@admin_bp.route('/admin')
@admin_required
def dashboard():
    outcome = request_store.load_for_dashboard(_load_admin_data, default=lambda: {'requests': [], 'users': []})
    if outcome.degraded:
        flash(_('Data load timed out. Check the backend connection.'), 'error')

    requests = outcome.value['requests']
    users = outcome.value['users']
    admins = [u for u in users if u['role'] == 'admin']
    reviewers = [u for u in users if u['role'] == 'reviewer']
    regular_users = [u for u in users if u['role'] == 'user']
    stats = {
        'total_requests': len(requests),
        'total_users': len(regular_users),
        'total_reviewers': len(reviewers),
        'total_admins': len(admins),
        'open_requests': request_store.request_stats(requests)['open'],
    }
    return render_template(
        'admin/dashboard.html', requests=requests, admins=admins, reviewers=reviewers,
        regular_users=regular_users, stats=stats, statuses=STATUSES, valid_roles=ROLES,
        current_user_id=current_identity().id
    )


# ==================== REQUEST OVERSIGHT ====================

@admin_bp.route('/admin/requests/<int:req_id>/assign', methods=['POST'])
@admin_required
def assign_reviewer(req_id):
    req = ChangeRequest.query.get_or_404(req_id)
    reviewer_id = request.form.get('reviewer_id', 'none')
    try:
        request_store.assign_reviewer(req, None if reviewer_id == 'none' else int(reviewer_id))
    except (ValidationError, ValueError) as exc:
        flash(str(exc), 'error')
        return redirect(url_for('admin.dashboard'))
    flash(_('Reviewer assigned successfully'), 'success')
    return redirect(url_for('admin.dashboard'))


@admin_bp.route('/admin/requests/<int:req_id>/status', methods=['POST'])
@admin_required
def update_request_status(req_id):
    req = ChangeRequest.query.get_or_404(req_id)
    try:
        request_store.set_status(req, request.form.get('status'))
    except ValidationError as exc:
        flash(str(exc), 'error')
        return redirect(url_for('admin.dashboard'))
    flash(_('Status updated successfully'), 'success')
    return redirect(url_for('admin.dashboard'))


@admin_bp.route('/admin/requests/<int:req_id>/delete', methods=['POST'])
@admin_required
def delete_request(req_id):
    req = ChangeRequest.query.get_or_404(req_id)
    request_store.delete_change_request(req)
    flash(_('Request deleted successfully'), 'success')
    return redirect(url_for('admin.dashboard'))


# ==================== USER MANAGEMENT ====================

@admin_bp.route('/admin/users/<int:user_id>/toggle', methods=['POST'])
@admin_required
def toggle_user_status(user_id):
    user = User.query.get_or_404(user_id)

    # Prevent admin from disabling themselves
    if user.id == current_identity().id:
        flash(_('You cannot disable your own account.'), 'error')
        return redirect(url_for('admin.dashboard'))

    active = request_store.toggle_user_active(user)
    flash(_('User enabled successfully') if active else _('User disabled successfully'), 'success')
    return redirect(url_for('admin.dashboard'))


@admin_bp.route('/admin/users/<int:user_id>/role', methods=['POST'])
@admin_required
def update_user_role(user_id):
    """Update a user's role."""
    user = User.query.get_or_404(user_id)
    new_role = request.form.get('role')

    # Prevent admin from demoting themselves
    if user.id == current_identity().id:
        flash(_('You cannot change your own role.'), 'error')
        return redirect(url_for('admin.dashboard'))

    try:
        request_store.set_user_role(user, new_role)
    except ValidationError as exc:
        flash(str(exc), 'error')
        return redirect(url_for('admin.dashboard'))

    flash(_('Role of %(email)s updated to %(role)s.', email=user.email, role=new_role), 'success')
    return redirect(url_for('admin.dashboard'))


@admin_bp.route('/admin/users/<int:user_id>/delete', methods=['POST'])
@admin_required
def delete_user(user_id):
    """Delete a user."""
    user = User.query.get_or_404(user_id)

    # Prevent admin from deleting themselves
    if user.id == current_identity().id:
        flash(_('You cannot delete yourself.'), 'error')
        return redirect(url_for('admin.dashboard'))

    email = user.email
    request_store.delete_user(user)
    flash(_('User %(email)s deleted.', email=email), 'success')
    return redirect(url_for('admin.dashboard'))
