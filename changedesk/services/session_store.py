"""
Session store - the signed-in identity of each browser session.

A ``SessionContext`` is registered once it holds an identity (or a resolution
is in flight) and torn down at sign-out or when it ends up anonymous. Results
from the resolver are committed with sequence tokens: a result only lands if
no newer resolution has already committed, so a slow, stale resolution can
never overwrite a fresher one.
"""
import itertools
import logging
import threading
import uuid

from flask import current_app
from flask_babel import gettext as _
from sqlalchemy.exc import SQLAlchemyError

from changedesk.services.identity import (
    EmailNotVerifiedError, IdentityRejectedError, InvalidCredentialsError, ResolvedIdentity, local_part,
)
from changedesk.services.identity_provider import ProviderSession
from changedesk.services.resilience import in_app_context

logger = logging.getLogger(__name__)


class SessionContext:

    def __init__(self, sid, identity=None, provider_session=None):
        self.sid = sid
        self.identity = identity
        self.provider_session = provider_session
        self._lock = threading.Lock()
        self._tokens = itertools.count(1)
        self._in_flight = set()
        self._committed = 0
        self._errors = []

    @property
    def loading(self):
        with self._lock:
            return bool(self._in_flight)

    def begin(self):
        """Hand out the token a resolution commits with."""
        with self._lock:
            token = next(self._tokens)
            self._in_flight.add(token)
            return token

    def commit(self, token, identity, provider_session=None):
        """Apply a resolution result. Returns False when a newer result already committed."""
        with self._lock:
            self._in_flight.discard(token)
            if token <= self._committed:
                logger.debug('Dropping stale resolution %d for session %s', token, self.sid)
                return False
            self._committed = token
            self.identity = identity
            self.provider_session = provider_session if identity is not None else None
            return True

    def abandon(self, token):
        with self._lock:
            self._in_flight.discard(token)

    def report(self, message, category='error'):
        with self._lock:
            self._errors.append((category, message))

    def drain_errors(self):
        with self._lock:
            errors, self._errors = self._errors, []
            return errors


class SessionStore:

    def __init__(self, resolver, provider, executor, timeout=4.0):
        self.resolver = resolver
        self.provider = provider
        self.executor = executor
        self.timeout = timeout
        self._contexts = {}
        self._lock = threading.Lock()

    # ==================== Lifecycle ====================

    def __len__(self):
        with self._lock:
            return len(self._contexts)

    def open(self, sid=None, identity=None, provider_session=None):
        """A fresh context. Only kept in the registry once ``track`` is called."""
        return SessionContext(sid or uuid.uuid4().hex, identity, provider_session)

    def track(self, ctx):
        with self._lock:
            self._contexts[ctx.sid] = ctx

    def get(self, sid):
        with self._lock:
            return self._contexts.get(sid)

    def close(self, ctx):
        with self._lock:
            self._contexts.pop(ctx.sid, None)

    def load(self, cookie):
        """Context for a Flask session. Rebuilt from the cookie snapshot if this process lost it.

        A rebuilt context has the provider claims but no provider token.
        """
        sid = cookie.get('sid')
        ctx = self.get(sid) if sid else None
        if ctx is None:
            ctx = self.open(
                sid=sid,
                identity=ResolvedIdentity.from_session(cookie.get('identity')),
                provider_session=ProviderSession.from_session(cookie.get('provider_session')),
            )
        return ctx

    def save(self, ctx, cookie):
        identity = ctx.identity
        if identity is None:
            for key in ('identity', 'provider_session', 'user_id', 'user_role', 'user_name'):
                cookie.pop(key, None)
            if ctx.loading:
                self.track(ctx)
                cookie['sid'] = ctx.sid
            else:
                self.close(ctx)
                cookie.pop('sid', None)
            return
        self.track(ctx)
        cookie['sid'] = ctx.sid
        cookie['identity'] = identity.to_session()
        cookie['provider_session'] = ctx.provider_session.to_session() if ctx.provider_session else None
        cookie['user_id'] = identity.id
        cookie['user_role'] = identity.role
        cookie['user_name'] = identity.display_name

    def current_identity(self, ctx):
        return ctx.identity

    # ==================== Sign-in ====================

    def sign_in_with_password(self, ctx, username, password):
        token = ctx.begin()
        try:
            outcome = self.executor.call(
                in_app_context(lambda: self.resolver.authenticate_admin(username, password)),
                timeout=self.timeout,
                fallback=None,
                fallback_on=(SQLAlchemyError,),
                label='authenticate_admin',
            )
        except IdentityRejectedError as exc:
            ctx.commit(token, None)
            ctx.report(str(exc))
            return None
        except InvalidCredentialsError as exc:
            ctx.abandon(token)
            ctx.report(str(exc))
            return None
        if outcome.degraded:
            ctx.abandon(token)
            ctx.report(_('The server is not responding. Please try again.'))
            return None
        if ctx.commit(token, outcome.value):
            self.track(ctx)
        logger.info('Admin %s signed in', outcome.value.email)
        return outcome.value

    def begin_federated_sign_in(self, redirect_uri):
        return self.provider.authorize_redirect(redirect_uri)

    def handle_auth_state_change(self, ctx, provider_session):
        """Resolve the identity behind a provider session and commit it to ``ctx``.

        ``provider_session`` of None means the provider signed the user out.
        """
        token = ctx.begin()
        if provider_session is None or not provider_session.claims.email:
            ctx.commit(token, None)
            return None

        claims = provider_session.claims
        try:
            if not claims.email_verified:
                raise EmailNotVerifiedError(claims.email)
            derived = self.resolver.derive_role(claims.email)
            outcome = self.executor.call(
                in_app_context(lambda: self.resolver.resolve(claims.email, claims.name, claims.subject)),
                timeout=self.timeout,
                fallback=lambda: self._provisional_identity(claims, derived),
                fallback_on=(SQLAlchemyError,),
                label='resolve_identity',
            )
        except IdentityRejectedError as exc:
            self._reject(ctx, token, provider_session, exc)
            return None

        if outcome.degraded:
            ctx.report(_('Could not reach the server, some details may be out of date.'), 'warning')
        if ctx.commit(token, outcome.value, provider_session):
            self.track(ctx)
            logger.info('%s signed in as %s', outcome.value.email, outcome.value.role)
        return ctx.identity

    def probe(self, ctx):
        """Re-validate the stored provider session, as on a fresh page load."""
        if ctx.provider_session is None:
            return ctx.identity
        return self.handle_auth_state_change(ctx, ctx.provider_session)

    def refresh(self, ctx):
        """Re-read the signed-in user's row on each request.

        A disabled or deleted account is rejected, a changed role takes effect
        at once. If the database does not answer in time the held identity is
        kept. Provisional identities have no row yet and are left alone.
        """
        identity = ctx.identity
        if identity is None or identity.id is None:
            return identity
        token = ctx.begin()
        try:
            outcome = self.executor.call(
                in_app_context(lambda: self.resolver.reload(identity.id)),
                timeout=self.timeout,
                fallback=identity,
                fallback_on=(SQLAlchemyError,),
                label='reload_identity',
            )
        except IdentityRejectedError as exc:
            self._reject(ctx, token, ctx.provider_session, exc, email=identity.email)
            return None
        if outcome.degraded:
            logger.warning('Could not re-read %s, keeping the session identity', identity.email)
            ctx.abandon(token)
            return ctx.identity
        refreshed = outcome.value
        if refreshed.role != identity.role:
            logger.info('Role of %s is now %s', refreshed.email, refreshed.role)
        ctx.commit(token, refreshed, ctx.provider_session)
        return ctx.identity

    def sign_out(self, ctx):
        token = ctx.begin()
        provider_session = ctx.provider_session
        if provider_session is not None:
            self.provider.sign_out(provider_session.token)
        ctx.commit(token, None)
        self.close(ctx)

    # ==================== Internals ====================

    def _reject(self, ctx, token, provider_session, exc, email=None):
        if email is None:
            email = provider_session.claims.email
        logger.warning('Rejected %s: %s', email, exc)
        # Provider first, so no authenticated state outlives the rejection
        if provider_session is not None:
            self.provider.sign_out(provider_session.token)
        ctx.commit(token, None)
        ctx.report(str(exc))

    @staticmethod
    def _provisional_identity(claims, role):
        return ResolvedIdentity(
            id=None,
            email=claims.email.strip().lower(),
            display_name=claims.name or local_part(claims.email),
            role=role,
            provisional=True,
        )


def get_session_store():
    return current_app.extensions['session_store']
