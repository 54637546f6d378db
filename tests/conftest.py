"""Shared fixtures: an app on a temporary SQLite file and a fake identity provider."""
import pytest
from authlib.integrations.base_client import OAuthError
from flask import redirect
from werkzeug.security import generate_password_hash

from changedesk import create_app
from changedesk.extensions import db
from changedesk.models import User, AdminCredential
from changedesk.services.identity_provider import ProviderClaims, ProviderSession


class FakeIdentityProvider:
    """Stands in for Google: hands out whatever session the test queued."""

    def __init__(self):
        self.next_session = None
        self.signed_out = []

    def authorize_redirect(self, redirect_uri):
        return redirect(f'https://accounts.example/auth?redirect_uri={redirect_uri}')

    def complete_sign_in(self):
        if self.next_session is None:
            raise OAuthError(error='access_denied')
        return self.next_session

    def sign_out(self, token):
        self.signed_out.append(token)


def provider_session(email, name=None, subject=None, email_verified=True):
    return ProviderSession(
        claims=ProviderClaims(subject=subject or f'sub-{email}', email=email, name=name, email_verified=email_verified),
        token={'access_token': f'token-{email}', 'token_type': 'Bearer'},
    )


@pytest.fixture
def provider():
    return FakeIdentityProvider()


@pytest.fixture
def app(tmp_path, provider):
    app = create_app(
        'testing',
        identity_provider=provider,
        SQLALCHEMY_DATABASE_URI=f"sqlite:///{tmp_path / 'changedesk.db'}",
        UPLOAD_FOLDER=str(tmp_path / 'uploads'),
    )
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.drop_all()
    app.extensions['resilient_executor'].shutdown()


@pytest.fixture
def client(app):
    return app.test_client()


# =============================================================================
# Factories
# =============================================================================

@pytest.fixture
def make_user(app):
    def _make_user(email, role='user', display_name=None, active=True):
        with app.app_context():
            user = User(email=email, role=role, display_name=display_name or email.split('@')[0], active=active)
            db.session.add(user)
            db.session.commit()
            return user.id
    return _make_user


@pytest.fixture
def make_admin(app, make_user):
    def _make_admin(username='root', password='S3cret!pass', email='root@inst.edu', active=True):
        user_id = make_user(email, role='admin', display_name='Root Admin', active=active)
        with app.app_context():
            db.session.add(AdminCredential(
                username=username, password_hash=generate_password_hash(password), user_id=user_id
            ))
            db.session.commit()
        return user_id
    return _make_admin


@pytest.fixture
def sign_in(client, provider):
    """Complete a Google sign-in for ``email`` through the OAuth callback."""
    def _sign_in(email, name=None, follow_redirects=False):
        provider.next_session = provider_session(email, name)
        return client.get('/authorize', follow_redirects=follow_redirects)
    return _sign_in
