"""Work groups: membership and recipe sharing."""
import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from . import models, schemas
from .auth import AuthContext, get_profile_by_email
from .config import Settings
from .crud import get_editable_recipe, get_readable_recipe, member_group_ids
from .entitlements import check_group_limit, check_member_limit, entitlements_for
from .errors import Forbidden, NotFound, ValidationFailed

logger = logging.getLogger(__name__)

ADMIN = "admin"
MEMBER = "member"


def _membership(db: Session, group_id: str, user_id: str) -> Optional[models.GroupMember]:
    return (
        db.query(models.GroupMember)
        .filter(
            models.GroupMember.work_group_id == group_id,
            models.GroupMember.user_id == user_id,
        )
        .first()
    )


def _member_count(db: Session, group_id: str) -> int:
    return (
        db.query(models.GroupMember)
        .filter(models.GroupMember.work_group_id == group_id)
        .count()
    )


def _visible_group(db: Session, ctx: AuthContext, group_id: str) -> models.WorkGroup:
    ctx.require_user()
    group = db.get(models.WorkGroup, group_id)
    if group is None or group_id not in member_group_ids(db, ctx.user_id):
        raise NotFound("Group not found")
    return group


def _admin_group(db: Session, ctx: AuthContext, group_id: str) -> models.WorkGroup:
    group = _visible_group(db, ctx, group_id)
    if group.created_by == ctx.user_id:
        return group
    membership = _membership(db, group_id, ctx.user_id)
    if membership is None or membership.role != ADMIN:
        raise Forbidden("Admin only")
    return group


def group_out(db: Session, ctx: AuthContext, group: models.WorkGroup) -> schemas.GroupOut:
    rows = (
        db.query(models.GroupMember, models.Profile)
        .join(models.Profile, models.Profile.id == models.GroupMember.user_id)
        .filter(models.GroupMember.work_group_id == group.id)
        .order_by(models.Profile.email)
        .all()
    )
    return schemas.GroupOut(
        id=group.id,
        name=group.name,
        description=group.description,
        restaurant_id=group.restaurant_id,
        created_by=group.created_by,
        is_owner=group.created_by == ctx.user_id,
        members=[
            schemas.MemberOut(
                id=profile.id,
                email=profile.email,
                full_name=profile.full_name,
                role=member.role,
            )
            for member, profile in rows
        ],
    )


def list_groups(db: Session, ctx: AuthContext) -> List[schemas.GroupOut]:
    ctx.require_user()
    ids = member_group_ids(db, ctx.user_id)
    if not ids:
        return []
    groups = (
        db.query(models.WorkGroup)
        .filter(models.WorkGroup.id.in_(ids))
        .order_by(models.WorkGroup.created_at)
        .all()
    )
    return [group_out(db, ctx, g) for g in groups]


def create_group(
    db: Session, settings: Settings, ctx: AuthContext, data: schemas.GroupIn
) -> models.WorkGroup:
    ctx.require_user()
    # solo users (no restaurant) manage their own groups
    if ctx.restaurant_id and not ctx.is_manager:
        raise Forbidden("Only the chef can create groups")
    name = data.name.strip()
    if not name:
        raise ValidationFailed("Group name is required")

    ent = entitlements_for(db, settings, ctx)
    check_group_limit(ent, len(member_group_ids(db, ctx.user_id)))

    group = models.WorkGroup(
        name=name,
        description=(data.description or "").strip() or None,
        restaurant_id=ctx.restaurant_id,
        created_by=ctx.user_id,
    )
    db.add(group)
    db.flush()
    db.add(models.GroupMember(work_group_id=group.id, user_id=ctx.user_id, role=ADMIN))
    db.commit()
    db.refresh(group)
    logger.info("user %s created group %s", ctx.user_id, group.id)
    return group


def rename_group(db: Session, ctx: AuthContext, group_id: str, name: str) -> models.WorkGroup:
    group = _admin_group(db, ctx, group_id)
    name = name.strip()
    if not name:
        raise ValidationFailed("Group name is required")
    group.name = name
    db.commit()
    db.refresh(group)
    return group


def delete_group(db: Session, ctx: AuthContext, group_id: str) -> None:
    _admin_group(db, ctx, group_id)
    db.query(models.WorkGroupRecipe).filter(
        models.WorkGroupRecipe.group_id == group_id
    ).delete(synchronize_session=False)
    db.query(models.GroupMember).filter(
        models.GroupMember.work_group_id == group_id
    ).delete(synchronize_session=False)
    db.query(models.WorkGroup).filter(models.WorkGroup.id == group_id).delete(
        synchronize_session=False
    )
    db.commit()
    logger.info("user %s deleted group %s", ctx.user_id, group_id)


def add_member(
    db: Session,
    settings: Settings,
    ctx: AuthContext,
    group_id: str,
    data: schemas.AddMemberIn,
) -> dict:
    """Add a user to a group. Adding an existing member is a no-op."""
    _admin_group(db, ctx, group_id)
    if data.user_id:
        target = db.get(models.Profile, data.user_id)
    elif data.email:
        target = get_profile_by_email(db, data.email)
    else:
        raise ValidationFailed("user_id or email required")
    if target is None:
        raise NotFound("User not found")

    if _membership(db, group_id, target.id):
        return {"ok": True, "already_member": True}

    check_member_limit(entitlements_for(db, settings, ctx), _member_count(db, group_id))
    db.add(models.GroupMember(work_group_id=group_id, user_id=target.id, role=MEMBER))
    db.commit()
    logger.info("added %s to group %s", target.id, group_id)
    return {"ok": True, "already_member": False}


def remove_member(db: Session, ctx: AuthContext, group_id: str, user_id: str) -> None:
    _admin_group(db, ctx, group_id)
    if user_id == ctx.user_id:
        raise ValidationFailed("You cannot remove yourself from the group")
    db.query(models.GroupMember).filter(
        models.GroupMember.work_group_id == group_id,
        models.GroupMember.user_id == user_id,
    ).delete(synchronize_session=False)
    db.commit()


def recipe_groups(db: Session, ctx: AuthContext, recipe_id: str) -> List[str]:
    """Ids of the caller's groups the recipe is shared with."""
    get_readable_recipe(db, ctx, recipe_id)
    mine = member_group_ids(db, ctx.user_id)
    if not mine:
        return []
    return [
        link.group_id
        for link in db.query(models.WorkGroupRecipe.group_id).filter(
            models.WorkGroupRecipe.recipe_id == recipe_id,
            models.WorkGroupRecipe.group_id.in_(mine),
        )
    ]


def share_recipe(
    db: Session, ctx: AuthContext, recipe_id: str, group_ids: List[str]
) -> List[str]:
    """Replace the recipe's shares among the caller's groups with ``group_ids``."""
    get_editable_recipe(db, ctx, recipe_id)
    mine = member_group_ids(db, ctx.user_id)
    wanted = list(dict.fromkeys(group_ids))
    foreign = [g for g in wanted if g not in mine]
    if foreign:
        raise Forbidden("You can only share with groups you belong to")

    if mine:
        db.query(models.WorkGroupRecipe).filter(
            models.WorkGroupRecipe.recipe_id == recipe_id,
            models.WorkGroupRecipe.group_id.in_(mine),
        ).delete(synchronize_session=False)
    db.add_all(
        [models.WorkGroupRecipe(group_id=g, recipe_id=recipe_id) for g in wanted]
    )
    db.commit()
    logger.info("recipe %s shared with %d group(s)", recipe_id, len(wanted))
    return wanted


def group_recipes(db: Session, ctx: AuthContext, group_id: str) -> List[models.Recipe]:
    _visible_group(db, ctx, group_id)
    return (
        db.query(models.Recipe)
        .join(models.WorkGroupRecipe, models.WorkGroupRecipe.recipe_id == models.Recipe.id)
        .filter(models.WorkGroupRecipe.group_id == group_id)
        .order_by(models.WorkGroupRecipe.shared_at.desc())
        .all()
    )
