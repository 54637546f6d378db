"""Google OpenID Connect sign-in through Authlib."""
import logging
from dataclasses import dataclass, asdict
from typing import Optional

from changedesk.extensions import oauth

logger = logging.getLogger(__name__)


@dataclass
class ProviderClaims:
    subject: str
    email: str
    name: Optional[str] = None
    email_verified: bool = True


@dataclass
class ProviderSession:
    """What the provider hands back after a completed sign-in."""
    claims: ProviderClaims
    token: Optional[dict] = None

    def to_session(self):
        """Cookie form. The token is never written to the cookie, it stays server-side."""
        return {'claims': asdict(self.claims)}

    @classmethod
    def from_session(cls, data):
        if not data:
            return None
        return cls(claims=ProviderClaims(**data['claims']))


def setup_oauth(app):
    oauth.init_app(app)
    oauth.register(
        name='google',
        client_id=app.config.get('GOOGLE_CLIENT_ID'),
        client_secret=app.config.get('GOOGLE_CLIENT_SECRET'),
        server_metadata_url=app.config.get('GOOGLE_METADATA_URL'),
        client_kwargs={'scope': 'openid email profile'},
    )


class GoogleIdentityProvider:

    def __init__(self, revoke_url=None):
        self.revoke_url = revoke_url

    @property
    def client(self):
        return oauth.google

    def authorize_redirect(self, redirect_uri):
        return self.client.authorize_redirect(redirect_uri)

    def complete_sign_in(self) -> ProviderSession:
        """Exchange the callback code for a token and read the verified claims."""
        token = self.client.authorize_access_token()
        userinfo = token.get('userinfo') or self.client.userinfo(token=token)
        claims = ProviderClaims(
            subject=str(userinfo.get('sub')),
            email=userinfo.get('email'),
            name=userinfo.get('name') or userinfo.get('given_name'),
            email_verified=bool(userinfo.get('email_verified', True)),
        )
        stored_token = {k: token[k] for k in ('access_token', 'token_type', 'expires_at') if k in token}
        return ProviderSession(claims=claims, token=stored_token)

    def sign_out(self, token):
        """Revoke the provider token so the provider session ends with ours."""
        if not token or not self.revoke_url:
            return
        try:
            self.client.post(self.revoke_url, data={'token': token.get('access_token')}, token=token)
        except Exception as exc:
            # The local session is cleared regardless
            logger.warning('Token revocation failed: %s', exc)
