"""User (identity) and admin credential models."""
from datetime import datetime
from changedesk.extensions import db

ROLES = ['user', 'reviewer', 'admin']


class User(db.Model):
    __tablename__ = 'users'
    
    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(254), unique=True, nullable=False)  # Always lower-case
    display_name = db.Column(db.String(200))
    role = db.Column(db.String(20), nullable=False, default='user')  # user, reviewer, admin
    active = db.Column(db.Boolean, nullable=False, default=True)
    provider_id = db.Column(db.String(255))  # OAuth subject, if linked
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    
    requests = db.relationship(
        'ChangeRequest', backref='author', lazy=True,
        foreign_keys='ChangeRequest.author_id', cascade='all, delete-orphan'
    )
    notifications = db.relationship(
        'Notification', backref='recipient', lazy=True, cascade='all, delete-orphan'
    )
    comments = db.relationship('Comment', backref='author', lazy=True, cascade='all, delete-orphan')
    credentials = db.relationship('AdminCredential', backref='user', lazy=True, cascade='all, delete-orphan')
    
    def to_dict(self):
        return {
            'id': self.id,
            'email': self.email,
            'display_name': self.display_name,
            'role': self.role,
            'active': self.active,
            'created_at': self.created_at,
        }


class AdminCredential(db.Model):
    __tablename__ = 'admin_credentials'
    
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(120), unique=True, nullable=False)
    password_hash = db.Column(db.String(256), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
