"""
Role capabilities and the role-gated client routes.
Administrator is a superset of every other role.
"""

from typing import Iterable, List, Union

from database.models import Role

# Client route → roles allowed besides administrator
ROUTE_ROLES = {
    "/question-maker": (Role.QUESTION_MAKER,),
    "/data-entry": (Role.DATA_ENTRY,),
    "/qc": (Role.QC_DATA,),
    "/metadata": (Role.METADATA,),
    "/admin": (),
    "/admin/users": (),
}


def as_role(value: Union[str, Role]) -> Role:
    return value if isinstance(value, Role) else Role(value)


def has_capability(role: Union[str, Role], required: Union[str, Role]) -> bool:
    role = as_role(role)
    return role == Role.ADMINISTRATOR or role == as_role(required)


def has_any_capability(role: Union[str, Role], required: Iterable[Union[str, Role]]) -> bool:
    return any(has_capability(role, r) for r in required) or as_role(role) == Role.ADMINISTRATOR


def allowed_routes(role: Union[str, Role]) -> List[str]:
    return [route for route, roles in ROUTE_ROLES.items() if has_any_capability(role, roles)]
