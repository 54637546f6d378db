"""Session store: commit ordering, rejection path and timeout fallback."""
import threading

import pytest

from changedesk.services.identity import (
    IdentityResolver, AccountDisabledError, ResolvedIdentity,
)
from changedesk.services.resilience import ResilientExecutor
from changedesk.services.session_store import SessionContext, SessionStore
from tests.conftest import FakeIdentityProvider, provider_session


def _identity(email, role='user', id=1):
    return ResolvedIdentity(id=id, email=email, display_name=email.split('@')[0], role=role)


# =============================================================================
# SessionContext
# =============================================================================

def test_newer_result_wins_over_a_stale_one():
    ctx = SessionContext('sid')
    older = ctx.begin()
    newer = ctx.begin()
    assert ctx.loading

    assert ctx.commit(newer, _identity('new@inst.edu'))
    assert not ctx.commit(older, _identity('old@inst.edu'))
    assert ctx.identity.email == 'new@inst.edu'
    assert not ctx.loading


def test_results_committed_in_order_all_land():
    ctx = SessionContext('sid')
    first, second = ctx.begin(), ctx.begin()
    assert ctx.commit(first, _identity('a@inst.edu'))
    assert ctx.loading
    assert ctx.commit(second, _identity('b@inst.edu'))
    assert ctx.identity.email == 'b@inst.edu'


def test_abandon_clears_loading_without_touching_identity():
    ctx = SessionContext('sid', identity=_identity('a@inst.edu'))
    token = ctx.begin()
    ctx.abandon(token)
    assert not ctx.loading
    assert ctx.identity.email == 'a@inst.edu'


def test_error_channel_drains_once():
    ctx = SessionContext('sid')
    ctx.report('first')
    ctx.report('second', 'warning')
    assert ctx.drain_errors() == [('error', 'first'), ('warning', 'second')]
    assert ctx.drain_errors() == []


# =============================================================================
# SessionStore with stand-in collaborators
# =============================================================================

class SlowResolver(IdentityResolver):
    """Resolver that never touches the database; ``slow@`` blocks until released."""

    def __init__(self):
        super().__init__('inst.edu')
        self.started = threading.Event()
        self.release = threading.Event()
        self.disabled = set()

    def resolve(self, email, display_name=None, provider_id=None):
        role = self.derive_role(email)
        if email in self.disabled:
            raise AccountDisabledError(email)
        if email.startswith('slow'):
            self.started.set()
            self.release.wait(5)
        return _identity(email, role, id=hash(email) % 1000)


@pytest.fixture
def store(app):
    executor = ResilientExecutor(max_workers=4)
    store = SessionStore(SlowResolver(), FakeIdentityProvider(), executor, timeout=2.0)
    yield store
    store.resolver.release.set()
    executor.shutdown()


def test_stale_resolution_does_not_overwrite_a_newer_one(app, store):
    ctx = store.open()

    def slow_sign_in():
        with app.test_request_context():
            store.handle_auth_state_change(ctx, provider_session('slow55@inst.edu'))

    worker = threading.Thread(target=slow_sign_in)
    worker.start()
    assert store.resolver.started.wait(2)

    with app.test_request_context():
        store.handle_auth_state_change(ctx, provider_session('fast@inst.edu'))
    assert ctx.identity.email == 'fast@inst.edu'

    store.resolver.release.set()
    worker.join(5)
    assert ctx.identity.email == 'fast@inst.edu'
    assert not ctx.loading


def test_domain_rejection_signs_out_at_provider_first(app, store):
    ctx = store.open(identity=_identity('someone@inst.edu'))
    session = provider_session('outsider@other.com')
    with app.test_request_context():
        assert store.handle_auth_state_change(ctx, session) is None
    assert ctx.identity is None
    assert store.provider.signed_out == [session.token]
    assert ctx.drain_errors() == [('error', 'Only inst.edu emails are allowed.')]


def test_disabled_account_is_signed_out_with_its_own_message(app, store):
    store.resolver.disabled.add('abc@inst.edu')
    ctx = store.open()
    with app.test_request_context():
        assert store.handle_auth_state_change(ctx, provider_session('abc@inst.edu')) is None
    assert len(store.provider.signed_out) == 1
    assert ctx.drain_errors() == [('error', 'Your account has been disabled.')]


def test_timeout_falls_back_to_provisional_identity(app, store):
    store.timeout = 0.1
    ctx = store.open()
    with app.test_request_context():
        identity = store.handle_auth_state_change(ctx, provider_session('slow12@inst.edu', 'Slow Poke'))
    assert identity.provisional
    assert identity.id is None
    assert identity.role == 'user'
    assert identity.display_name == 'Slow Poke'
    assert ctx.identity is identity
    assert [category for category, _ in ctx.drain_errors()] == ['warning']


def test_provider_sign_out_event_clears_identity(app, store):
    ctx = store.open(identity=_identity('abc@inst.edu'))
    with app.test_request_context():
        assert store.handle_auth_state_change(ctx, None) is None
    assert ctx.identity is None


def test_probe_without_provider_session_keeps_identity(app, store):
    ctx = store.open(identity=_identity('root@inst.edu', 'admin'))
    with app.test_request_context():
        assert store.probe(ctx).role == 'admin'


def test_sign_out_tears_down_context(app, store):
    ctx = store.open()
    session = provider_session('abc@inst.edu')
    with app.test_request_context():
        store.handle_auth_state_change(ctx, session)
    assert store.get(ctx.sid) is ctx

    store.sign_out(ctx)
    assert ctx.identity is None
    assert store.provider.signed_out == [session.token]
    assert store.get(ctx.sid) is None


def test_load_rebuilds_lost_context_from_cookie(store):
    identity = _identity('abc@inst.edu', 'reviewer')
    cookie = {}
    ctx = store.open(identity=identity)
    store.save(ctx, cookie)
    assert cookie['user_role'] == 'reviewer'

    store.close(ctx)
    rebuilt = store.load(cookie)
    assert rebuilt is not ctx
    assert rebuilt.sid == ctx.sid
    assert rebuilt.identity == identity


def test_anonymous_context_is_not_kept(store):
    cookie = {}
    ctx = store.load(cookie)
    store.save(ctx, cookie)
    assert len(store) == 0
    assert 'sid' not in cookie


def test_context_with_resolution_in_flight_is_kept(store):
    cookie = {}
    ctx = store.load(cookie)
    ctx.begin()
    store.save(ctx, cookie)
    assert store.get(cookie['sid']) is ctx


def test_cookie_snapshot_drops_the_provider_token(app, store):
    ctx = store.open()
    with app.test_request_context():
        store.handle_auth_state_change(ctx, provider_session('abc@inst.edu'))
    cookie = {}
    store.save(ctx, cookie)
    assert cookie['provider_session'] == {'claims': {
        'subject': 'sub-abc@inst.edu', 'email': 'abc@inst.edu', 'name': None, 'email_verified': True,
    }}
    assert ctx.provider_session.token['access_token'] == 'token-abc@inst.edu'


def test_unverified_email_is_rejected(app, store):
    ctx = store.open()
    session = provider_session('abc@inst.edu', email_verified=False)
    with app.test_request_context():
        assert store.handle_auth_state_change(ctx, session) is None
    assert store.provider.signed_out == [session.token]
    assert [category for category, _ in ctx.drain_errors()] == ['error']


def test_refresh_leaves_provisional_identity_alone(store):
    identity = ResolvedIdentity(id=None, email='slow12@inst.edu', display_name='Slow', role='user',
                                provisional=True)
    ctx = store.open(identity=identity)
    assert store.refresh(ctx) is identity
    assert not ctx.loading
