"""Route access controller: decides what a navigation attempt may render.

Each attempt starts Pending and ends in exactly one terminal state:

  Allowed | RedirectLogin | RedirectHome | RedirectAdminHome | Denied

Session liveness and permission resolution run together and both must
settle before any terminal state is reported, so a caller never sees
Allowed flash up and then get withdrawn. Resolution is bounded by a
timeout; a store failure or timeout ends in Denied with an error code
and never in Allowed.

Rules, first match wins:
  1. public route, live session           → RedirectHome
  2. protected route, no live session     → RedirectLogin (returnUrl kept)
  3. admin route, principal not admin     → RedirectLogin (admin login)
  4. admin route, admin, outside /admin   → RedirectAdminHome
  5. any route, admin, outside /admin     → RedirectAdminHome
  6. otherwise                            → Allowed
"""

import asyncio
import enum
import logging
from typing import Callable
from urllib.parse import quote

from pydantic import BaseModel

from menuguard.auth.session import IdentityGate, Session, principal_id_from_token
from menuguard.config import Settings, settings
from menuguard.middleware.exceptions import (
    MenuGuardException,
    ResolutionTimeout,
    StoreUnavailable,
)
from menuguard.rbac.hierarchy import is_admin_role
from menuguard.rbac.resolver import PermissionResolver
from menuguard.rbac.types import ResolvedPermissionSet

logger = logging.getLogger("menuguard.routing")


class AccessState(str, enum.Enum):
    PENDING = "pending"
    ALLOWED = "allowed"
    REDIRECT_LOGIN = "redirect_login"
    REDIRECT_HOME = "redirect_home"
    REDIRECT_ADMIN_HOME = "redirect_admin_home"
    DENIED = "denied"


class RouteMeta(BaseModel):
    require_auth: bool = True
    admin_only: bool = False
    # Overrides the login page chosen from the path prefix
    redirect_to: str | None = None

    model_config = {"frozen": True}


class AccessDecision(BaseModel):
    state: AccessState
    redirect_to: str | None = None
    error_code: str | None = None
    message: str | None = None
    retryable: bool = False

    model_config = {"frozen": True}

    @property
    def is_terminal(self) -> bool:
        return self.state is not AccessState.PENDING


PENDING = AccessDecision(state=AccessState.PENDING)


def is_admin_path(path: str, prefix: str | None = None) -> bool:
    """True if `path` is the admin prefix itself or a segment below it."""
    prefix = (prefix or settings.admin_path_prefix).rstrip("/")
    return path == prefix or path.startswith(prefix + "/")


def login_url(
    path: str,
    query: str = "",
    route: RouteMeta | None = None,
    config: Settings = settings,
) -> str:
    """Login target for `path`, carrying the requested path+query as returnUrl."""
    if route is not None and route.redirect_to:
        target = route.redirect_to
    elif is_admin_path(path, config.admin_path_prefix):
        target = config.admin_login_path
    else:
        target = config.login_path

    if query and not query.startswith("?"):
        query = f"?{query}"
    return_url = quote(path + query, safe="")
    return f"{target}?{config.return_url_param}={return_url}"


def decide_route_access(
    *,
    authenticated: bool,
    session_live: bool,
    is_admin: bool,
    route: RouteMeta,
    path: str,
    query: str = "",
    config: Settings = settings,
) -> AccessDecision:
    """Pure decision over fully settled inputs.

    `authenticated` means a principal is known; `session_live` means the
    identity provider still vouches for it. Only both together count as
    signed in. `is_admin` is ignored unless signed in.
    """
    signed_in = authenticated and session_live
    is_admin = signed_in and is_admin
    in_admin_area = is_admin_path(path, config.admin_path_prefix)

    if not route.require_auth and signed_in:
        return AccessDecision(state=AccessState.REDIRECT_HOME, redirect_to=config.home_path)

    if route.require_auth and not signed_in:
        return AccessDecision(
            state=AccessState.REDIRECT_LOGIN,
            redirect_to=login_url(path, query, route, config),
        )

    if route.admin_only and not is_admin:
        # Admin pages never partially render for non-admins
        return AccessDecision(
            state=AccessState.REDIRECT_LOGIN,
            redirect_to=login_url(
                path, query, RouteMeta(redirect_to=config.admin_login_path), config
            ),
        )

    if is_admin and not in_admin_area:
        # Admins are kept inside the admin area, including on shared routes
        return AccessDecision(
            state=AccessState.REDIRECT_ADMIN_HOME,
            redirect_to=config.admin_home_path,
        )

    return AccessDecision(state=AccessState.ALLOWED)


def _denied(error: MenuGuardException) -> AccessDecision:
    return AccessDecision(
        state=AccessState.DENIED,
        error_code=error.error_code,
        message=error.message,
        retryable=True,
    )


class NavigationAttempt:
    """Handle for one in-flight navigation.

    `decision` stays Pending until resolution settles. After `cancel()` the
    attempt never leaves Pending and never notifies listeners, so a caller
    that has navigated away is not handed a stale result.
    """

    def __init__(self):
        self._decision = PENDING
        self._cancelled = False
        self._task: asyncio.Task | None = None
        self._listeners: list[Callable[[AccessDecision], None]] = []

    @property
    def decision(self) -> AccessDecision:
        return self._decision

    @property
    def state(self) -> AccessState:
        return self._decision.state

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def on_settled(self, listener: Callable[[AccessDecision], None]) -> None:
        self._listeners.append(listener)

    def cancel(self) -> None:
        self._cancelled = True
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def wait(self) -> AccessDecision:
        if self._task is not None:
            try:
                await asyncio.shield(self._task)
            except asyncio.CancelledError:
                if not self._cancelled:
                    raise
        return self._decision

    def _attach(self, task: asyncio.Task) -> None:
        self._task = task
        task.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task) -> None:
        if self._cancelled or task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Navigation resolution crashed: {error!r}")
            self._settle(_denied(MenuGuardException(
                "Access could not be resolved", error_code="RESOLUTION_FAILED"
            )))
            return
        self._settle(task.result())

    def _settle(self, decision: AccessDecision) -> None:
        self._decision = decision
        for listener in self._listeners:
            listener(decision)


class RouteAccessController:
    """Resolves navigation attempts against the identity gate and resolver.

    Permission sets are re-checked on navigation: a cached set older than
    `revalidate_seconds` is recomputed, bounding how long a change made in
    another process can go unnoticed.
    """

    def __init__(
        self,
        gate: IdentityGate,
        resolver: PermissionResolver,
        config: Settings = settings,
        timeout: float | None = None,
        revalidate_seconds: float | None = None,
    ):
        self.gate = gate
        self.resolver = resolver
        self.config = config
        self.timeout = timeout if timeout is not None else config.resolution_timeout_seconds
        self.revalidate_seconds = (
            revalidate_seconds
            if revalidate_seconds is not None
            else config.permission_revalidate_seconds
        )

    async def _settle_both(
        self, token: str | None, principal_id: str
    ) -> tuple[Session | BaseException | None, ResolvedPermissionSet | BaseException]:
        return await asyncio.gather(
            self.gate.current_session(token),
            self.resolver.resolve(principal_id, max_age=self.revalidate_seconds),
            return_exceptions=True,
        )

    async def resolve(
        self,
        token: str | None,
        route: RouteMeta,
        path: str,
        query: str = "",
        timeout: float | None = None,
    ) -> AccessDecision:
        """Run session and permission resolution together, then decide."""
        principal_id = principal_id_from_token(token)
        bound = timeout if timeout is not None else self.timeout

        session = None
        resolved = None
        if principal_id is not None:
            try:
                session, resolved = await asyncio.wait_for(
                    self._settle_both(token, principal_id), bound
                )
            except asyncio.TimeoutError:
                logger.warning(
                    f"Access resolution for {path} timed out after {bound:g}s",
                    extra={"principal_id": principal_id, "path": path},
                )
                return _denied(ResolutionTimeout(bound))

        if isinstance(session, BaseException):
            logger.error(f"Session check failed for {path}: {session!r}")
            session = None
        session_live = session is not None and session.principal_id == principal_id

        if session_live and isinstance(resolved, BaseException):
            if not isinstance(resolved, StoreUnavailable):
                logger.error(f"Permission resolution failed for {path}: {resolved!r}")
                return _denied(MenuGuardException(
                    "Access could not be resolved", error_code="RESOLUTION_FAILED"
                ))
            logger.warning(
                f"Denying {path}: permission store unavailable",
                extra={"principal_id": principal_id, "path": path},
            )
            return _denied(resolved)

        is_admin = (
            session_live
            and isinstance(resolved, ResolvedPermissionSet)
            and is_admin_role(resolved.effective_role)
        )
        decision = decide_route_access(
            authenticated=principal_id is not None,
            session_live=session_live,
            is_admin=is_admin,
            route=route,
            path=path,
            query=query,
            config=self.config,
        )
        logger.debug(
            f"Navigation to {path}: {decision.state.value}",
            extra={"principal_id": principal_id, "path": path},
        )
        return decision

    def start(
        self,
        token: str | None,
        route: RouteMeta,
        path: str,
        query: str = "",
        timeout: float | None = None,
    ) -> NavigationAttempt:
        """Begin resolving a navigation and return its handle immediately."""
        attempt = NavigationAttempt()
        task = asyncio.get_running_loop().create_task(
            self.resolve(token, route, path, query, timeout)
        )
        attempt._attach(task)
        return attempt
