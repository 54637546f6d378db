"""Reviewer dashboard - triage, status decisions and comments."""
from flask import Blueprint, render_template, request, redirect, url_for, flash
from flask_babel import gettext as _

from changedesk.models import db, ChangeRequest, User, STATUSES
from changedesk.routes.auth import reviewer_required, current_identity, current_user
from changedesk.services import request_store
from changedesk.services.request_store import ValidationError

review_bp = Blueprint('review', __name__)


@review_bp.route('/review')
@reviewer_required
def dashboard():
    identity = current_identity()
    status_filter = request.args.get('status', 'all')
    mine_only = request.args.get('scope') == 'mine'

    def load():
        rows = request_store.list_requests()
        if mine_only:
            rows = [r for r in rows if r.reviewer_id == identity.id]
        return [r.to_dict() for r in rows]

    outcome = request_store.load_for_dashboard(load)
    if outcome.degraded:
        flash(_('Data load timed out. Check the backend connection.'), 'error')

    requests = outcome.value
    stats = request_store.request_stats(requests)
    if status_filter != 'all':
        requests = [r for r in requests if r['status'] == status_filter]
    return render_template(
        'review/dashboard.html', requests=requests, stats=stats,
        status_filter=status_filter, mine_only=mine_only, statuses=STATUSES
    )


@review_bp.route('/review/<int:req_id>')
@reviewer_required
def request_detail(req_id):
    req = ChangeRequest.query.get_or_404(req_id)
    submitter = db.session.get(User, req.author_id)
    comments = request_store.list_comments(req.id)
    return render_template(
        'review/detail.html', req=req, submitter=submitter, comments=comments, statuses=STATUSES
    )


@review_bp.route('/review/<int:req_id>/status', methods=['POST'])
@reviewer_required
def update_status(req_id):
    req = ChangeRequest.query.get_or_404(req_id)
    status = request.form.get('status')
    identity = current_identity()
    try:
        request_store.set_status(req, status, reviewer_id=identity.id)
    except ValidationError as exc:
        flash(str(exc), 'error')
        return redirect(url_for('review.request_detail', req_id=req_id))

    flash(_('Request %(status)s!', status=status.replace('_', ' ')), 'success')
    return redirect(url_for('review.dashboard'))


@review_bp.route('/review/<int:req_id>/comments', methods=['POST'])
@reviewer_required
def add_comment(req_id):
    req = ChangeRequest.query.get_or_404(req_id)
    author = current_user()
    if author is None:
        flash(_('Your profile could not be loaded yet. Please sign in again.'), 'warning')
        return redirect(url_for('review.request_detail', req_id=req_id))
    try:
        request_store.add_comment(req, author, request.form.get('body'))
    except ValidationError as exc:
        flash(str(exc), 'error')
    else:
        flash(_('Comment added successfully'), 'success')
    return redirect(url_for('review.request_detail', req_id=req_id))
