"""Notification routes - inbox and read flags."""
from flask import Blueprint, render_template, redirect, url_for, abort, flash
from flask_babel import gettext as _

from changedesk.models import Notification
from changedesk.routes.auth import login_required, current_identity
from changedesk.services import notifications

notifications_bp = Blueprint('notifications', __name__)


@notifications_bp.route('/notifications')
@login_required
def inbox():
    identity = current_identity()
    if identity.id is None:
        flash(_('Your profile could not be loaded yet. Please sign in again.'), 'warning')
        return render_template('notifications/inbox.html', notifications=[], unread=0)
    return render_template(
        'notifications/inbox.html',
        notifications=notifications.get_user_notifications(identity.id),
        unread=notifications.get_unread_count(identity.id),
    )


@notifications_bp.route('/notifications/<int:notification_id>/read', methods=['POST'])
@login_required
def mark_read(notification_id):
    notification = Notification.query.get_or_404(notification_id)
    if notification.recipient_id != current_identity().id:
        abort(403)
    notifications.mark_as_read(notification)
    return redirect(url_for('notifications.inbox'))


@notifications_bp.route('/notifications/read-all', methods=['POST'])
@login_required
def mark_all_read():
    identity = current_identity()
    if identity.id is not None:
        notifications.mark_all_as_read(identity.id)
    return redirect(url_for('notifications.inbox'))
