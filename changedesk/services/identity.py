"""
Identity resolution - who may sign in, and with which role.

Every sign-in path ends here. Federated sign-ins go through
``IdentityResolver.resolve``, which checks the institutional domain (or the
reviewer allow-list), derives a role for first-time users, upserts the
``users`` row and refuses disabled accounts. Admin username/password sign-ins
go through ``IdentityResolver.authenticate_admin``.
"""
import logging
import re
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Iterable, Optional

from werkzeug.security import check_password_hash

from changedesk.models import db, User, AdminCredential

logger = logging.getLogger(__name__)

ROLE_POLICIES = ('assign_once', 'reapply')


class IdentityError(Exception):
    """Base class for sign-in failures."""


class IdentityRejectedError(IdentityError):
    """The identity must not hold a session; the provider session is ended too."""


class DomainNotAllowedError(IdentityRejectedError):
    def __init__(self, email, domain):
        super().__init__(f'Only {domain} emails are allowed.')
        self.email = email
        self.domain = domain


class AccountDisabledError(IdentityRejectedError):
    def __init__(self, email):
        super().__init__('Your account has been disabled.')
        self.email = email


class EmailNotVerifiedError(IdentityRejectedError):
    def __init__(self, email):
        super().__init__('Please verify your email address with Google before signing in.')
        self.email = email


class AccountRemovedError(IdentityRejectedError):
    def __init__(self, user_id):
        super().__init__('Your account no longer exists.')
        self.user_id = user_id


class InvalidCredentialsError(IdentityError):
    pass


@dataclass
class ResolvedIdentity:
    """The identity a session holds. ``provisional`` marks one built from provider claims only."""
    id: Optional[int]
    email: str
    display_name: str
    role: str
    active: bool = True
    created_at: Optional[datetime] = None
    provisional: bool = False

    @classmethod
    def from_user(cls, user):
        return cls(
            id=user.id,
            email=user.email,
            display_name=user.display_name or local_part(user.email),
            role=user.role,
            active=user.active,
            created_at=user.created_at,
        )

    def to_session(self):
        data = asdict(self)
        data['created_at'] = self.created_at.isoformat() if self.created_at else None
        return data

    @classmethod
    def from_session(cls, data):
        if not data:
            return None
        data = dict(data)
        if data.get('created_at'):
            data['created_at'] = datetime.fromisoformat(data['created_at'])
        return cls(**data)


def normalize_email(email):
    return (email or '').strip().lower()


def local_part(email):
    return normalize_email(email).split('@')[0] or 'User'


class IdentityResolver:
    """Decides whether an email may sign in and at which role."""

    def __init__(self, domain: str, reviewer_allowlist: Iterable[str] = (), role_policy: str = 'assign_once'):
        if role_policy not in ROLE_POLICIES:
            raise ValueError(f'Unknown role policy: {role_policy}')
        self.domain = domain.lower().lstrip('@')
        self.reviewer_allowlist = frozenset(normalize_email(e) for e in reviewer_allowlist)
        self.role_policy = role_policy
        self._user_pattern = re.compile(r'^[^@]*\d{2}@' + re.escape(self.domain) + r'$')

    @classmethod
    def from_config(cls, config):
        return cls(
            domain=config['INSTITUTION_DOMAIN'],
            reviewer_allowlist=config.get('REVIEWER_ALLOWLIST', ()),
            role_policy=config.get('ROLE_POLICY', 'assign_once'),
        )

    def is_allowed(self, email):
        email = normalize_email(email)
        return email.endswith('@' + self.domain) or email in self.reviewer_allowlist

    def derive_role(self, email):
        """Role a first-time sign-in gets. Raises DomainNotAllowedError for outsiders."""
        email = normalize_email(email)
        if not self.is_allowed(email):
            raise DomainNotAllowedError(email, self.domain)
        if email in self.reviewer_allowlist:
            return 'reviewer'
        return 'user' if self._user_pattern.match(email) else 'reviewer'

    def _role_for_existing(self, user, derived):
        if user.role == 'admin':
            return 'admin'
        if self.role_policy == 'reapply':
            return derived
        if normalize_email(user.email) in self.reviewer_allowlist:
            return 'reviewer'
        return user.role

    def resolve(self, email, display_name=None, provider_id=None) -> ResolvedIdentity:
        """Check, derive and upsert. Requires an application context."""
        email = normalize_email(email)
        derived = self.derive_role(email)

        user = User.query.filter_by(email=email).first()
        if user is None:
            user = User(
                email=email,
                display_name=display_name or local_part(email),
                role=derived,
                active=True,
                provider_id=provider_id,
            )
            db.session.add(user)
            db.session.commit()
            logger.info('Created %s with role %s', email, derived)
            return ResolvedIdentity.from_user(user)

        if not user.active:
            logger.warning('Refused sign-in for disabled account %s', email)
            raise AccountDisabledError(email)

        role = self._role_for_existing(user, derived)
        changed = False
        if user.role != role:
            logger.info('Role of %s changes from %s to %s', email, user.role, role)
            user.role = role
            changed = True
        if not user.display_name:
            user.display_name = display_name or local_part(email)
            changed = True
        if provider_id and user.provider_id != provider_id:
            user.provider_id = provider_id
            changed = True
        if changed:
            db.session.commit()
        return ResolvedIdentity.from_user(user)

    def authenticate_admin(self, username, password) -> ResolvedIdentity:
        username = (username or '').strip().lower()
        credential = AdminCredential.query.filter_by(username=username).first()
        if credential is None or not check_password_hash(credential.password_hash, password or ''):
            raise InvalidCredentialsError('Invalid admin credentials.')
        user = db.session.get(User, credential.user_id)
        if user is None:
            raise InvalidCredentialsError('Admin profile not found.')
        if not user.active:
            raise AccountDisabledError(user.email)
        return ResolvedIdentity.from_user(user)

    def reload(self, user_id) -> ResolvedIdentity:
        """Re-read a signed-in user's row so role changes and disabling take effect."""
        user = db.session.get(User, user_id)
        if user is None:
            raise AccountRemovedError(user_id)
        if not user.active:
            raise AccountDisabledError(user.email)
        return ResolvedIdentity.from_user(user)
