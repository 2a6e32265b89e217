"""Role model for plan access.

Every caller looking at a plan is exactly one of owner, member or
viewer. A role maps to a fixed set of capabilities; services ask for a
capability instead of comparing owner ids.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Iterable


class PlanRole(str, Enum):
    OWNER = "owner"
    MEMBER = "member"
    VIEWER = "viewer"


@dataclass(frozen=True)
class Capabilities:
    can_view: bool = True
    can_edit: bool = False
    can_toggle: bool = False
    can_invite: bool = False
    can_leave: bool = False

    def as_dict(self) -> dict:
        return asdict(self)


ROLE_CAPABILITIES = {
    PlanRole.OWNER: Capabilities(can_edit=True, can_toggle=True, can_invite=True),
    PlanRole.MEMBER: Capabilities(can_toggle=True, can_leave=True),
    PlanRole.VIEWER: Capabilities(),
}


def resolve_role(owner_id: str, user_id: str, member_ids: Iterable[str] = ()) -> PlanRole:
    """Return the role `user_id` holds on a plan owned by `owner_id`."""
    if user_id == owner_id:
        return PlanRole.OWNER
    if user_id in set(member_ids):
        return PlanRole.MEMBER
    return PlanRole.VIEWER


def capabilities_for(role: PlanRole) -> Capabilities:
    return ROLE_CAPABILITIES[role]
