"""Restaurant team: invitations and membership management."""
import logging
import secrets
from datetime import timedelta
from typing import List, Optional

from sqlalchemy.orm import Session

from . import models, schemas
from .auth import AuthContext, aware, get_profile_by_email, normalize_email
from .config import Settings
from .errors import Forbidden, NotFound, ValidationFailed

logger = logging.getLogger(__name__)

INVITE_ROLES = ("second", "commis", "stagiaire")
TEAM_ROLES = ("chef",) + INVITE_ROLES + ("staff",)
DEFAULT_ATTACH_ROLE = "staff"


def _require_manager(ctx: AuthContext) -> str:
    ctx.require_user()
    if not ctx.restaurant_id:
        raise Forbidden("Caller has no restaurant")
    if not ctx.is_manager:
        raise Forbidden("Only the chef can manage the team")
    return ctx.restaurant_id


def _team_member(db: Session, restaurant_id: str, user_id: str) -> models.Profile:
    target = db.get(models.Profile, user_id)
    if target is None:
        raise NotFound("User not found")
    if target.restaurant_id != restaurant_id:
        raise Forbidden("Target not in your restaurant")
    return target


def _check_role(role: str, allowed=TEAM_ROLES) -> str:
    role = (role or "").strip().lower()
    if role not in allowed:
        raise ValidationFailed(f"Unknown role '{role}'")
    return role


def send_invitation(
    db: Session, settings: Settings, ctx: AuthContext, data: schemas.InvitationIn
) -> models.Invitation:
    restaurant_id = _require_manager(ctx)
    email = normalize_email(data.email)
    if not email:
        raise ValidationFailed("email and role are required")
    role = _check_role(data.role, INVITE_ROLES)

    target = get_profile_by_email(db, email)
    if target is None:
        raise NotFound("No account with this email", code="NO_ACCOUNT")
    if target.restaurant_id:
        raise ValidationFailed(
            "User already belongs to a restaurant", code="ALREADY_IN_RESTAURANT"
        )

    now = models.utcnow()
    pending = [
        inv
        for inv in db.query(models.Invitation).filter(
            models.Invitation.invited_user_id == target.id,
            models.Invitation.restaurant_id == restaurant_id,
            models.Invitation.accepted_at.is_(None),
        )
        if aware(inv.expires_at) and aware(inv.expires_at) > now
    ]
    if pending:
        raise ValidationFailed("Invitation already pending", code="ALREADY_PENDING")

    invitation = models.Invitation(
        restaurant_id=restaurant_id,
        email=email,
        role=role,
        token=secrets.token_hex(32),
        invited_user_id=target.id,
        expires_at=now + timedelta(days=settings.invitation_days),
    )
    db.add(invitation)
    db.commit()
    db.refresh(invitation)
    logger.info("invitation %s sent to %s", invitation.id, target.id)
    return invitation


def pending_invitation(db: Session, ctx: AuthContext) -> Optional[models.Invitation]:
    """Newest open invitation addressed to the caller, if any."""
    user = ctx.require_user()
    now = models.utcnow()
    candidates = (
        db.query(models.Invitation)
        .filter(
            models.Invitation.invited_user_id == user.id,
            models.Invitation.accepted_at.is_(None),
        )
        .order_by(models.Invitation.created_at.desc())
        .all()
    )
    for invitation in candidates:
        if aware(invitation.expires_at) and aware(invitation.expires_at) > now:
            return invitation
    return None


def accept_invitation(db: Session, ctx: AuthContext, token: str) -> models.Profile:
    user = ctx.require_user()
    invitation = (
        db.query(models.Invitation).filter(models.Invitation.token == token).first()
    )
    if invitation is None:
        raise NotFound("Invitation not found")
    if invitation.accepted_at is not None:
        raise ValidationFailed("Invitation already accepted")
    if not invitation.expires_at or aware(invitation.expires_at) <= models.utcnow():
        raise ValidationFailed("Invitation expired")
    if invitation.invited_user_id != user.id:
        raise Forbidden("This invitation is addressed to another account")
    if user.restaurant_id and user.restaurant_id != invitation.restaurant_id:
        raise ValidationFailed(
            "User already belongs to a restaurant", code="ALREADY_IN_RESTAURANT"
        )

    restaurant = db.get(models.Restaurant, invitation.restaurant_id)
    user.restaurant_id = invitation.restaurant_id
    user.restaurant_role = invitation.role
    if restaurant is not None:
        user.establishment = restaurant.name
    user.updated_at = models.utcnow()
    invitation.accepted_at = models.utcnow()
    db.commit()
    db.refresh(user)
    logger.info("user %s joined restaurant %s", user.id, user.restaurant_id)
    return user


def revoke_invitation(db: Session, ctx: AuthContext, invitation_id: str) -> None:
    restaurant_id = _require_manager(ctx)
    invitation = db.get(models.Invitation, invitation_id)
    if invitation is None or invitation.restaurant_id != restaurant_id:
        raise NotFound("Invitation not found")
    db.delete(invitation)
    db.commit()


def list_team(db: Session, ctx: AuthContext) -> List[models.Profile]:
    ctx.require_user()
    if not ctx.restaurant_id:
        return [ctx.user]
    return (
        db.query(models.Profile)
        .filter(models.Profile.restaurant_id == ctx.restaurant_id)
        .order_by(models.Profile.created_at)
        .all()
    )


def set_role(db: Session, ctx: AuthContext, user_id: str, role: str) -> models.Profile:
    restaurant_id = _require_manager(ctx)
    target = _team_member(db, restaurant_id, user_id)
    target.restaurant_role = _check_role(role)
    target.updated_at = models.utcnow()
    db.commit()
    db.refresh(target)
    return target


def attach_user(db: Session, ctx: AuthContext, data: schemas.AttachUserIn) -> models.Profile:
    restaurant_id = _require_manager(ctx)
    if data.user_id:
        target = db.get(models.Profile, data.user_id)
    elif data.email:
        target = get_profile_by_email(db, data.email)
    else:
        raise ValidationFailed("user_id or email required")
    if target is None:
        raise NotFound("User not found", code="NO_ACCOUNT")
    if target.restaurant_id and target.restaurant_id != restaurant_id:
        raise ValidationFailed(
            "User already belongs to a restaurant", code="ALREADY_IN_RESTAURANT"
        )

    target.restaurant_id = restaurant_id
    target.restaurant_role = _check_role(data.restaurant_role or DEFAULT_ATTACH_ROLE)
    if data.full_name:
        target.full_name = data.full_name.strip()
    target.updated_at = models.utcnow()
    db.commit()
    db.refresh(target)
    return target


def detach_user(db: Session, ctx: AuthContext, user_id: str) -> None:
    restaurant_id = _require_manager(ctx)
    if user_id == ctx.user_id:
        raise ValidationFailed("You cannot detach yourself")
    target = _team_member(db, restaurant_id, user_id)
    db.query(models.GroupMember).filter(
        models.GroupMember.user_id == user_id
    ).delete(synchronize_session=False)
    target.restaurant_id = None
    target.restaurant_role = None
    target.updated_at = models.utcnow()
    db.commit()
    logger.info("user %s detached from restaurant %s", user_id, restaurant_id)
