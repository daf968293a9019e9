"""Tests for route access decisions and navigation attempts."""

import asyncio
from datetime import timedelta

import pytest

from menuguard.auth.jwt import create_access_token
from menuguard.routing import (
    AccessState,
    RouteAccessController,
    RouteMeta,
    decide_route_access,
    is_admin_path,
    login_url,
)

PUBLIC = RouteMeta(require_auth=False)
PROTECTED = RouteMeta()
ADMIN_ONLY = RouteMeta(admin_only=True)


def _decide(*, signed_in=True, is_admin=False, route=PROTECTED, path="/dashboard", query=""):
    return decide_route_access(
        authenticated=signed_in,
        session_live=signed_in,
        is_admin=is_admin,
        route=route,
        path=path,
        query=query,
    )


@pytest.mark.unit
class TestAdminPath:

    def test_segment_match(self):
        assert is_admin_path("/admin")
        assert is_admin_path("/admin/")
        assert is_admin_path("/admin/restaurants/42")
        assert not is_admin_path("/administrator")
        assert not is_admin_path("/admin-setup")
        assert not is_admin_path("/dashboard/admin")

    def test_login_url_keeps_path_and_query(self):
        assert login_url("/menu", "tab=drinks") == "/signin?returnUrl=%2Fmenu%3Ftab%3Ddrinks"
        assert login_url("/menu", "?tab=drinks") == "/signin?returnUrl=%2Fmenu%3Ftab%3Ddrinks"

    def test_login_url_uses_admin_login_inside_admin_area(self):
        assert login_url("/admin/users").startswith("/admin?returnUrl=")

    def test_route_override_wins(self):
        assert login_url("/menu", route=RouteMeta(redirect_to="/welcome")).startswith("/welcome?")


@pytest.mark.unit
class TestDecisionRules:

    def test_public_route_anonymous_is_allowed(self):
        decision = _decide(signed_in=False, route=PUBLIC, path="/signin")
        assert decision.state is AccessState.ALLOWED

    def test_public_route_signed_in_goes_home(self):
        decision = _decide(route=PUBLIC, path="/signin")
        assert decision.state is AccessState.REDIRECT_HOME
        assert decision.redirect_to == "/dashboard"

    def test_protected_route_anonymous_goes_to_login(self):
        decision = _decide(signed_in=False, path="/orders", query="status=open")
        assert decision.state is AccessState.REDIRECT_LOGIN
        assert decision.redirect_to == "/signin?returnUrl=%2Forders%3Fstatus%3Dopen"

    def test_authenticated_without_live_session_is_anonymous(self):
        decision = decide_route_access(
            authenticated=True,
            session_live=False,
            is_admin=True,
            route=PROTECTED,
            path="/admin/dashboard",
        )
        assert decision.state is AccessState.REDIRECT_LOGIN
        assert decision.redirect_to.startswith("/admin?returnUrl=")

    def test_restaurant_on_admin_route_goes_to_admin_login(self):
        decision = _decide(route=ADMIN_ONLY, path="/admin/dashboard")
        assert decision.state is AccessState.REDIRECT_LOGIN
        assert decision.redirect_to == "/admin?returnUrl=%2Fadmin%2Fdashboard"

    def test_admin_on_admin_route_is_allowed(self):
        decision = _decide(is_admin=True, route=ADMIN_ONLY, path="/admin/dashboard")
        assert decision.state is AccessState.ALLOWED

    def test_admin_only_route_outside_admin_area(self):
        decision = _decide(is_admin=True, route=ADMIN_ONLY, path="/reports")
        assert decision.state is AccessState.REDIRECT_ADMIN_HOME
        assert decision.redirect_to == "/admin/dashboard"

    def test_admin_on_shared_route_goes_to_admin_home(self):
        decision = _decide(is_admin=True, path="/dashboard")
        assert decision.state is AccessState.REDIRECT_ADMIN_HOME

    def test_restaurant_on_shared_route_is_allowed(self):
        decision = _decide(path="/menu")
        assert decision.state is AccessState.ALLOWED

    def test_is_admin_ignored_when_not_signed_in(self):
        decision = _decide(signed_in=False, is_admin=True, route=PUBLIC, path="/signin")
        assert decision.state is AccessState.ALLOWED


@pytest.fixture
def controller(gate, resolver):
    return RouteAccessController(gate, resolver, timeout=1.0)


@pytest.mark.rbac
@pytest.mark.asyncio
class TestRouteAccessController:

    async def test_restaurant_requesting_admin_dashboard(self, controller, catalog_store, make_token):
        catalog_store.assign("owner-1", catalog_store.role_named("restaurant"))

        decision = await controller.resolve(make_token("owner-1"), ADMIN_ONLY, "/admin/dashboard")

        assert decision.state is AccessState.REDIRECT_LOGIN
        assert decision.redirect_to.startswith("/admin?returnUrl=")

    async def test_super_admin_on_dashboard(self, controller, catalog_store, make_token):
        catalog_store.assign("root", catalog_store.role_named("super_admin"))

        decision = await controller.resolve(make_token("root"), PROTECTED, "/dashboard")

        assert decision.state is AccessState.REDIRECT_ADMIN_HOME

    async def test_anonymous_on_signin(self, controller, catalog_store):
        decision = await controller.resolve(None, PUBLIC, "/signin")

        assert decision.state is AccessState.ALLOWED
        assert catalog_store.calls["assignments"] == 0

    async def test_signed_in_on_signin(self, controller, catalog_store, make_token):
        catalog_store.assign("owner-1", catalog_store.role_named("restaurant"))

        decision = await controller.resolve(make_token("owner-1"), PUBLIC, "/signin")

        assert decision.state is AccessState.REDIRECT_HOME

    async def test_expired_token_goes_to_login(self, controller):
        token = create_access_token("owner-1", expires_delta=timedelta(minutes=-1))

        decision = await controller.resolve(token, PROTECTED, "/menu")

        assert decision.state is AccessState.REDIRECT_LOGIN

    async def test_ended_session_goes_to_login(self, controller, gate, catalog_store, make_token):
        catalog_store.assign("root", catalog_store.role_named("super_admin"))
        token = make_token("root")
        await gate.end_session(await gate.current_session(token))

        decision = await controller.resolve(token, ADMIN_ONLY, "/admin/users")

        assert decision.state is AccessState.REDIRECT_LOGIN

    async def test_revoked_admin_role_is_seen_on_next_navigation(
        self, controller, resolver, catalog_store, make_token
    ):
        admin = catalog_store.role_named("admin")
        catalog_store.assign("staff-1", catalog_store.role_named("restaurant"))
        catalog_store.assign("staff-1", admin)
        token = make_token("staff-1")
        assert (await controller.resolve(token, ADMIN_ONLY, "/admin/users")).state is AccessState.ALLOWED

        catalog_store.set_assignment_active("staff-1", admin, False)
        resolver.invalidate("staff-1")

        decision = await controller.resolve(token, ADMIN_ONLY, "/admin/users")
        assert decision.state is AccessState.REDIRECT_LOGIN

    async def test_store_failure_is_denied_not_allowed(self, controller, catalog_store, make_token):
        catalog_store.assign("owner-1", catalog_store.role_named("restaurant"))
        catalog_store.fail = True

        decision = await controller.resolve(make_token("owner-1"), PROTECTED, "/menu")

        assert decision.state is AccessState.DENIED
        assert decision.error_code == "STORE_UNAVAILABLE"
        assert decision.retryable

    async def test_store_failure_without_session_still_redirects(
        self, controller, revocation, catalog_store, make_token
    ):
        token = make_token("owner-1")
        await revocation.revoke_all_user_sessions("owner-1")
        catalog_store.fail = True

        decision = await controller.resolve(token, PROTECTED, "/menu")

        assert decision.state is AccessState.REDIRECT_LOGIN

    async def test_unexpected_resolution_error_is_denied(
        self, controller, catalog_store, make_token, monkeypatch
    ):
        async def broken(principal_id):
            raise RuntimeError("boom")

        monkeypatch.setattr(catalog_store, "fetch_role_assignments", broken)

        decision = await controller.resolve(make_token("owner-1"), PROTECTED, "/menu")

        assert decision.state is AccessState.DENIED
        assert decision.error_code == "RESOLUTION_FAILED"

    async def test_timeout_is_denied(self, controller, revocation, make_token):
        revocation.gate = asyncio.Event()

        decision = await controller.resolve(make_token("owner-1"), PROTECTED, "/menu", timeout=0.05)

        assert decision.state is AccessState.DENIED
        assert decision.error_code == "RESOLUTION_TIMEOUT"
        assert decision.retryable


@pytest.mark.rbac
@pytest.mark.asyncio
class TestNavigationAttempt:

    async def test_pending_until_both_sides_settle(
        self, controller, revocation, catalog_store, make_token
    ):
        catalog_store.assign("owner-1", catalog_store.role_named("restaurant"))
        revocation.gate = asyncio.Event()
        catalog_store.assignments_gate = asyncio.Event()
        seen = []

        attempt = controller.start(make_token("owner-1"), PROTECTED, "/menu")
        attempt.on_settled(seen.append)
        await asyncio.sleep(0.01)
        assert attempt.state is AccessState.PENDING

        # Session settled, permissions still loading
        revocation.gate.set()
        await asyncio.sleep(0.01)
        assert attempt.state is AccessState.PENDING
        assert seen == []

        catalog_store.assignments_gate.set()
        decision = await attempt.wait()

        assert decision.state is AccessState.ALLOWED
        assert decision.is_terminal
        assert [d.state for d in seen] == [AccessState.ALLOWED]

    async def test_permissions_first_then_session(
        self, controller, revocation, catalog_store, make_token
    ):
        catalog_store.assign("root", catalog_store.role_named("super_admin"))
        revocation.gate = asyncio.Event()

        attempt = controller.start(make_token("root"), PROTECTED, "/dashboard")
        await asyncio.sleep(0.01)
        assert catalog_store.calls["assignments"] == 1
        assert attempt.state is AccessState.PENDING

        revocation.gate.set()
        decision = await attempt.wait()

        assert decision.state is AccessState.REDIRECT_ADMIN_HOME

    async def test_cancelled_attempt_never_settles(
        self, controller, revocation, catalog_store, make_token
    ):
        catalog_store.assign("owner-1", catalog_store.role_named("restaurant"))
        revocation.gate = asyncio.Event()
        seen = []

        attempt = controller.start(make_token("owner-1"), PROTECTED, "/menu")
        attempt.on_settled(seen.append)
        await asyncio.sleep(0)
        attempt.cancel()
        revocation.gate.set()

        decision = await attempt.wait()
        await asyncio.sleep(0.01)

        assert attempt.cancelled
        assert decision.state is AccessState.PENDING
        assert seen == []

    async def test_timeout_settles_attempt_as_denied(self, controller, revocation, make_token):
        revocation.gate = asyncio.Event()

        attempt = controller.start(make_token("owner-1"), PROTECTED, "/menu", timeout=0.05)
        decision = await attempt.wait()

        assert decision.state is AccessState.DENIED
        assert attempt.decision == decision
