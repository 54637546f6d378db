"""Models package - Re-exports all models for convenient importing."""
from changedesk.extensions import db
from changedesk.models.user import User, AdminCredential, ROLES
from changedesk.models.change_request import ChangeRequest, Comment, PRIORITIES, STATUSES
from changedesk.models.notification import Notification, KINDS

__all__ = [
    'db', 'User', 'AdminCredential', 'ChangeRequest', 'Comment', 'Notification',
    'ROLES', 'PRIORITIES', 'STATUSES', 'KINDS',
]
