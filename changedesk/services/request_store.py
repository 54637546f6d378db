"""
Request store - change requests, comments and user administration.

Writes run on the request thread. Reads that feed the reviewer allocator or a
dashboard go through ``resilient_call`` so a slow backend degrades to an
empty result instead of hanging the page.
"""
import logging

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from changedesk.models import db, User, ChangeRequest, Comment, PRIORITIES, STATUSES, ROLES
from changedesk.services import notifications
from changedesk.services.resilience import resilient_call

logger = logging.getLogger(__name__)

OPEN_STATUSES = ['pending', 'under_review']


class ValidationError(ValueError):
    pass


def _clean(value):
    return (value or '').strip()


def validate_request_fields(title, description, priority):
    title, description = _clean(title), _clean(description)
    if not title or not description:
        raise ValidationError('Please fill in all required fields')
    if priority not in PRIORITIES:
        raise ValidationError(f'Unknown priority: {priority}')
    return title, description


# ==================== Reviewer allocation ====================

def load_reviewer_roster():
    return [u.id for u in User.query.filter_by(role='reviewer', active=True).order_by(User.id).all()]


def allocate_reviewer(priority):
    """Reviewer id for a request of ``priority``; None leaves the request unassigned."""
    outcome = resilient_call(
        load_reviewer_roster,
        timeout=current_app.config['BACKEND_TIMEOUT'],
        fallback=list,
        fallback_on=(SQLAlchemyError,),
    )
    return current_app.extensions['reviewer_allocator'].allocate(priority, outcome.value)


def _apply_assignment(req, reviewer_id):
    req.reviewer_id = reviewer_id
    req.status = 'under_review' if reviewer_id else 'pending'
    if reviewer_id:
        notifications.notify_reviewer_assignment(req, reviewer_id)


# ==================== Change requests ====================

def create_change_request(author, title, description, priority, attachment_ref=None):
    title, description = validate_request_fields(title, description, priority)
    reviewer_id = allocate_reviewer(priority)

    req = ChangeRequest(
        author_id=author.id,
        title=title,
        description=description,
        priority=priority,
        attachment_ref=attachment_ref,
    )
    db.session.add(req)
    db.session.flush()
    _apply_assignment(req, reviewer_id)
    notifications.notify_reviewers_and_admins(req, author.display_name or 'Unknown User')
    db.session.commit()
    logger.info('Request %s created by %s, reviewer %s', req.id, author.email, reviewer_id)
    return req


def update_change_request(req, title, description, priority, attachment_ref=None):
    """Edit a request. A priority change re-runs reviewer allocation."""
    title, description = validate_request_fields(title, description, priority)
    priority_changed = req.priority != priority
    req.title = title
    req.description = description
    req.priority = priority
    if attachment_ref:
        req.attachment_ref = attachment_ref
    if priority_changed:
        _apply_assignment(req, allocate_reviewer(priority))
        logger.info('Request %s re-allocated to %s after priority change', req.id, req.reviewer_id)
    db.session.commit()
    return req


def withdraw_change_request(req):
    if req.status not in OPEN_STATUSES:
        raise ValidationError('Only pending or in-review requests can be withdrawn')
    delete_change_request(req)


def delete_change_request(req):
    request_id = req.id
    db.session.delete(req)
    db.session.commit()
    logger.info('Request %s deleted', request_id)


def set_status(req, status, reviewer_id=None):
    """Move a request to any status and tell its author."""
    if status not in STATUSES:
        raise ValidationError(f'Unknown status: {status}')
    req.status = status
    if reviewer_id:
        req.reviewer_id = reviewer_id
    notifications.notify_status_update(req, status)
    db.session.commit()
    logger.info('Request %s is now %s', req.id, status)
    return req


def assign_reviewer(req, reviewer_id):
    """Assign a reviewer by hand, or unassign with None."""
    if reviewer_id is not None:
        reviewer = db.session.get(User, reviewer_id)
        if reviewer is None or reviewer.role not in ('reviewer', 'admin'):
            raise ValidationError('Selected user is not a reviewer')
    _apply_assignment(req, reviewer_id)
    db.session.commit()
    return req


def list_requests(author_id=None, statuses=None):
    query = ChangeRequest.query
    if author_id is not None:
        query = query.filter_by(author_id=author_id)
    if statuses:
        query = query.filter(ChangeRequest.status.in_(statuses))
    return query.order_by(ChangeRequest.created_at.desc(), ChangeRequest.id.desc()).all()


def load_for_dashboard(operation, default=list):
    """Run a read for a dashboard with DATA_LOAD_TIMEOUT; a slow backend yields ``default``."""
    return resilient_call(
        operation,
        timeout=current_app.config['DATA_LOAD_TIMEOUT'],
        fallback=default,
        fallback_on=(SQLAlchemyError,),
    )


def request_stats(requests):
    return {
        'total': len(requests),
        'pending': sum(1 for r in requests if r['status'] == 'pending'),
        'open': sum(1 for r in requests if r['status'] in OPEN_STATUSES),
        'approved': sum(1 for r in requests if r['status'] == 'approved'),
        'rejected': sum(1 for r in requests if r['status'] == 'rejected'),
    }


# ==================== Comments ====================

def add_comment(req, author, body):
    body = _clean(body)
    if not body:
        raise ValidationError('Comment cannot be empty')
    comment = Comment(request_id=req.id, author_id=author.id, body=body)
    db.session.add(comment)
    if author.id != req.author_id:
        notifications.notify_comment_added(req, author.display_name or author.email)
    db.session.commit()
    return comment


def list_comments(request_id):
    return (Comment.query.filter_by(request_id=request_id)
            .order_by(Comment.created_at.desc(), Comment.id.desc()).all())


# ==================== Users ====================

def list_users():
    return User.query.order_by(User.created_at.asc(), User.id.asc()).all()


def toggle_user_active(user):
    user.active = not user.active
    db.session.commit()
    logger.info('User %s %s', user.email, 'enabled' if user.active else 'disabled')
    return user.active


def set_user_role(user, role):
    if role not in ROLES:
        raise ValidationError(f'Invalid role: {role}')
    user.role = role
    db.session.commit()
    logger.info('User %s is now %s', user.email, role)


def delete_user(user):
    """Delete a user with their requests, comments and notifications."""
    ChangeRequest.query.filter_by(reviewer_id=user.id, status='under_review').update(
        {'status': 'pending'}, synchronize_session=False
    )
    ChangeRequest.query.filter_by(reviewer_id=user.id).update(
        {'reviewer_id': None}, synchronize_session=False
    )
    email = user.email
    db.session.delete(user)
    db.session.commit()
    logger.info('User %s deleted', email)
