# clinicgate/gate.py
# Per-request authorization checkpoint: allow, redirect, or rewrite before any handler runs.

import enum
import re
from dataclasses import dataclass
from typing import Optional, Pattern, Sequence
from urllib.parse import urlencode

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import RedirectResponse

from .rbac import ROUTE_CONFIGS, RouteConfig, get_route_config, has_required_role, is_path_allowed
from .roles import Role
from .security import AuthenticatedUser, AuthToken, read_auth_token

logger = structlog.get_logger(__name__)

SIGNIN_PATH = "/auth/signin"
VERIFICATION_NOTICE_PATH = "/auth/verification-notice"
UNAUTHORIZED_PATH = "/unauthorized"

EXCLUDED_PREFIXES = ("/static", "/favicon.ico", "/api/auth", "/api/health")
EXCLUDED_FILE_PATTERN = re.compile(r"\.(?:svg|png|jpg|jpeg|gif|webp|ico|css|js|map)$")


class GateState(str, enum.Enum):
    UNCHECKED = "UNCHECKED"
    EXCLUDED = "EXCLUDED"
    ALLOWED = "ALLOWED"
    REDIRECT_SIGNIN = "REDIRECT_SIGNIN"
    REDIRECT_VERIFY = "REDIRECT_VERIFY"
    REWRITE_UNAUTHORIZED = "REWRITE_UNAUTHORIZED"


@dataclass(frozen=True)
class GateDecision:
    state: GateState
    target: Optional[str] = None
    user: Optional[AuthenticatedUser] = None


class AuthorizationGate:
    """Route-table driven access decisions.

    Checks run in a fixed order: exclusions, route lookup, authentication,
    email verification, then role. Verification comes before the role
    check so an unverified admin is let through by the admin bypass.
    Paths with no route entry are allowed.
    """

    def __init__(
        self,
        route_configs: Sequence[RouteConfig] = ROUTE_CONFIGS,
        excluded_prefixes: Sequence[str] = EXCLUDED_PREFIXES,
        excluded_file_pattern: Pattern[str] = EXCLUDED_FILE_PATTERN,
    ):
        self.route_configs = tuple(route_configs)
        self.excluded_prefixes = tuple(excluded_prefixes)
        self.excluded_file_pattern = excluded_file_pattern

    def is_excluded(self, path: str) -> bool:
        if any(is_path_allowed(path, prefix) for prefix in self.excluded_prefixes):
            return True
        return self.excluded_file_pattern.search(path) is not None

    def evaluate(self, path: str, url: str, token: Optional[AuthToken]) -> GateDecision:
        if self.is_excluded(path):
            return GateDecision(GateState.EXCLUDED)

        user = AuthenticatedUser.from_token(token) if token else None
        route_config = get_route_config(path, self.route_configs)
        if route_config is None:
            return GateDecision(GateState.ALLOWED, user=user)

        if token is None:
            if route_config.roles or route_config.require_email_verification:
                query = urlencode({"callbackUrl": url})
                return GateDecision(GateState.REDIRECT_SIGNIN, target=f"{SIGNIN_PATH}?{query}")
            return GateDecision(GateState.ALLOWED)

        if route_config.require_email_verification and not token.email_verified:
            if token.role == Role.ADMIN:
                return GateDecision(GateState.ALLOWED, user=user)
            if is_path_allowed(path, VERIFICATION_NOTICE_PATH):
                return GateDecision(GateState.ALLOWED, user=user)
            query = urlencode({"email": token.email or ""})
            return GateDecision(GateState.REDIRECT_VERIFY, target=f"{VERIFICATION_NOTICE_PATH}?{query}")

        if route_config.roles and not has_required_role(token.role, route_config.roles):
            return GateDecision(GateState.REWRITE_UNAUTHORIZED, target=UNAUTHORIZED_PATH, user=user)

        return GateDecision(GateState.ALLOWED, user=user)


class AuthorizationMiddleware(BaseHTTPMiddleware):
    """Applies ``AuthorizationGate`` decisions to every inbound request."""

    def __init__(self, app, gate: Optional[AuthorizationGate] = None, settings=None):
        super().__init__(app)
        self.gate = gate or AuthorizationGate()
        self.settings = settings

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if self.gate.is_excluded(path):
            return await call_next(request)

        token = read_auth_token(request, self.settings)
        decision = self.gate.evaluate(path, str(request.url), token)

        if decision.state in (GateState.REDIRECT_SIGNIN, GateState.REDIRECT_VERIFY):
            logger.info("gate_redirect", path=path, state=decision.state.value, target=decision.target)
            return RedirectResponse(decision.target, status_code=307)

        if decision.user is not None:
            request.state.user = decision.user

        if decision.state == GateState.REWRITE_UNAUTHORIZED:
            logger.info("gate_rewrite", path=path, user_id=decision.user.id, role=str(decision.user.role))
            # Browser URL is unchanged; routing resolves the unauthorized page instead
            request.scope["path"] = decision.target
            request.scope["raw_path"] = decision.target.encode()

        return await call_next(request)
