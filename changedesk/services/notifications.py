"""Notification service - side effects of the request lifecycle."""
import logging

from changedesk.models import db, User, Notification

logger = logging.getLogger(__name__)


def _notify(recipient_id, request, kind, title, body):
    notification = Notification(
        recipient_id=recipient_id,
        request_id=request.id,
        kind=kind,
        title=title,
        body=body,
        read=False,
    )
    db.session.add(notification)
    return notification


def notify_reviewers_and_admins(request, requester_name):
    """Tell every active reviewer and admin about a new request. Caller commits."""
    recipients = User.query.filter(User.role.in_(['reviewer', 'admin']), User.active.is_(True)).all()
    if not recipients:
        logger.info('No reviewers or admins to notify about request %s', request.id)
        return []
    notifications = [
        _notify(
            person.id, request, 'new_request', 'New Change Request',
            f'{requester_name} submitted a new change request: "{request.title}"'
        )
        for person in recipients
    ]
    logger.info('Notified %d reviewers/admins about request %s', len(notifications), request.id)
    return notifications


def notify_reviewer_assignment(request, reviewer_id):
    return _notify(
        reviewer_id, request, 'request_assigned', 'Request Assigned to You',
        f'You have been assigned to review: "{request.title}"'
    )


def notify_status_update(request, new_status):
    return _notify(
        request.author_id, request, 'status_update', 'Request Status Updated',
        f'Your request "{request.title}" has been {new_status.replace("_", " ")}'
    )


def notify_comment_added(request, commenter_name):
    return _notify(
        request.author_id, request, 'comment_added', 'New Comment',
        f'{commenter_name} commented on your request "{request.title}"'
    )


def get_user_notifications(user_id):
    return (Notification.query.filter_by(recipient_id=user_id)
            .order_by(Notification.created_at.desc(), Notification.id.desc()).all())


def get_unread_count(user_id):
    return Notification.query.filter_by(recipient_id=user_id, read=False).count()


def mark_as_read(notification):
    notification.read = True
    db.session.commit()


def mark_all_as_read(user_id):
    updated = (Notification.query.filter_by(recipient_id=user_id, read=False)
               .update({'read': True}, synchronize_session=False))
    db.session.commit()
    return updated
