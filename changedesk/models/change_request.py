"""ChangeRequest and Comment models."""
from datetime import datetime
from changedesk.extensions import db

PRIORITIES = ['low', 'medium', 'high', 'critical']
STATUSES = ['pending', 'under_review', 'approved', 'rejected']


class ChangeRequest(db.Model):
    __tablename__ = 'change_requests'
    
    id = db.Column(db.Integer, primary_key=True)
    author_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    reviewer_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=False)
    priority = db.Column(db.String(20), nullable=False, default='medium')  # low, medium, high, critical
    status = db.Column(db.String(20), nullable=False, default='pending')  # pending, under_review, approved, rejected
    attachment_ref = db.Column(db.String(500))  # Public URL of the stored attachment
    
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    
    reviewer = db.relationship('User', foreign_keys=[reviewer_id])
    comments = db.relationship(
        'Comment', backref='request', lazy=True, cascade='all, delete-orphan',
        order_by='Comment.created_at.desc()'
    )
    notifications = db.relationship('Notification', backref='request', lazy=True, cascade='all, delete-orphan')
    
    def to_dict(self):
        return {
            'id': self.id,
            'author_id': self.author_id,
            'reviewer_id': self.reviewer_id,
            'title': self.title,
            'description': self.description,
            'priority': self.priority,
            'status': self.status,
            'attachment_ref': self.attachment_ref,
            'created_at': self.created_at,
            'updated_at': self.updated_at,
        }


class Comment(db.Model):
    __tablename__ = 'comments'
    
    id = db.Column(db.Integer, primary_key=True)
    request_id = db.Column(db.Integer, db.ForeignKey('change_requests.id'), nullable=False)
    author_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    body = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)