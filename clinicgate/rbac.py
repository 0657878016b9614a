# clinicgate/rbac.py
# Route access table and matching helpers used by the authorization gate.

import re
from dataclasses import dataclass
from typing import Iterable, Optional, Pattern, Sequence, Union

from .roles import Role

RoutePattern = Union[str, Pattern[str]]

ALL_MEMBER_ROLES = frozenset({Role.ADMIN, Role.HEALTHCARE_PROVIDER, Role.PATIENT})
STAFF_ROLES = frozenset({Role.ADMIN, Role.HEALTHCARE_PROVIDER})


@dataclass(frozen=True)
class RouteConfig:
    pattern: RoutePattern
    roles: Optional[frozenset] = None
    require_email_verification: Optional[bool] = None


# Checked top to bottom, first match wins. A specific pattern must come
# before any broader pattern that would also match its paths.
ROUTE_CONFIGS: Sequence[RouteConfig] = (
    RouteConfig("/", roles=ALL_MEMBER_ROLES),
    RouteConfig(re.compile(r"^/api/auth(/.*)?$")),

    # Auth pages
    RouteConfig(re.compile(
        r"^/auth/(signin|register|forgot-password|reset-password|verify-email|verification-notice|error)$"
    )),

    # Patient care
    RouteConfig(
        re.compile(r"^/appointments(/.*)?$"),
        roles=frozenset({Role.PATIENT, Role.HEALTHCARE_PROVIDER, Role.ADMIN}),
        require_email_verification=True,
    ),
    RouteConfig(re.compile(r"^/patients(/.*)?$"), roles=STAFF_ROLES, require_email_verification=True),

    # Administration
    RouteConfig(re.compile(r"^/admin(/.*)?$"), roles=frozenset({Role.ADMIN}), require_email_verification=True),
    RouteConfig(re.compile(r"^/api/admin(/.*)?$"), roles=frozenset({Role.ADMIN}), require_email_verification=True),
    RouteConfig(re.compile(r"^/settings(/.*)?$"), roles=STAFF_ROLES, require_email_verification=True),

    # Dashboard: practice metrics are staff-only, the rest is open to members
    RouteConfig("/dashboard/metrics", roles=STAFF_ROLES, require_email_verification=True),
    RouteConfig("/dashboard", roles=ALL_MEMBER_ROLES, require_email_verification=True),
)


def is_path_allowed(path: str, pattern: RoutePattern) -> bool:
    """True when ``path`` falls under ``pattern``.

    String patterns match the exact path and anything nested below it;
    compiled patterns are searched against the whole path.
    """
    if isinstance(pattern, str):
        return path == pattern or path.startswith(f"{pattern}/")
    return pattern.search(path) is not None


def get_route_config(path: str, configs: Iterable[RouteConfig] = ROUTE_CONFIGS) -> Optional[RouteConfig]:
    for config in configs:
        if is_path_allowed(path, config.pattern):
            return config
    return None


def has_required_role(user_role, required_roles=None) -> bool:
    if not required_roles:
        return True
    try:
        user_role = Role(user_role)
    except ValueError:
        return False
    return user_role in required_roles
