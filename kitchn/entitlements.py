from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from . import models
from .auth import AuthContext
from .config import Settings
from .errors import Forbidden

GROUPS_LIMIT = "groups.limit"
MEMBERS_LIMIT = "members.limit"


@dataclass(frozen=True)
class GroupEntitlements:
    # None means unlimited
    max_groups: Optional[int]
    max_members_per_group: Optional[int]


def is_premium(db: Session, restaurant_id: Optional[str]) -> bool:
    if not restaurant_id:
        return False
    restaurant = db.get(models.Restaurant, restaurant_id)
    return bool(restaurant and restaurant.current_plan_id)


def group_entitlements(settings: Settings, premium: bool) -> GroupEntitlements:
    if premium:
        return GroupEntitlements(max_groups=None, max_members_per_group=None)
    return GroupEntitlements(
        max_groups=settings.free_max_groups,
        max_members_per_group=settings.free_max_members,
    )


def entitlements_for(db: Session, settings: Settings, ctx: AuthContext) -> GroupEntitlements:
    return group_entitlements(settings, is_premium(db, ctx.restaurant_id))


def check_group_limit(ent: GroupEntitlements, current_groups: int) -> None:
    if ent.max_groups is not None and current_groups >= ent.max_groups:
        raise Forbidden(
            f"The free plan allows {ent.max_groups} group(s). "
            "Upgrade to Premium to create more.",
            code=GROUPS_LIMIT,
        )


def check_member_limit(ent: GroupEntitlements, current_members: int) -> None:
    if (
        ent.max_members_per_group is not None
        and current_members >= ent.max_members_per_group
    ):
        raise Forbidden(
            f"The free plan allows {ent.max_members_per_group} members per group. "
            "Upgrade to Premium to add more.",
            code=MEMBERS_LIMIT,
        )
