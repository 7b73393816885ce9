import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
from sqlalchemy.orm import Session

from . import models, schemas
from .config import Settings
from .errors import Conflict, Unauthorized, ValidationFailed

logger = logging.getLogger(__name__)

MANAGER_ROLES = {"chef", "owner", "admin"}


@dataclass
class AuthContext:
    """Who is calling, passed explicitly into every service function."""

    user: Optional[models.Profile]
    token: Optional[str] = None
    remember: bool = True

    @property
    def user_id(self) -> Optional[str]:
        return self.user.id if self.user else None

    @property
    def restaurant_id(self) -> Optional[str]:
        return self.user.restaurant_id if self.user else None

    @property
    def is_manager(self) -> bool:
        role = (self.user.restaurant_role or "") if self.user else ""
        return role.lower() in MANAGER_ROLES

    def require_user(self) -> models.Profile:
        if self.user is None:
            raise Unauthorized("Not authenticated")
        return self.user


def aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands datetimes back without tzinfo; they are stored as UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def hash_password(password: str) -> str:
    salt = bcrypt.gensalt()
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, hashed: Optional[str]) -> bool:
    if not hashed:
        return False
    return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def get_profile_by_email(db: Session, email: str) -> Optional[models.Profile]:
    return (
        db.query(models.Profile)
        .filter(models.Profile.email == normalize_email(email))
        .first()
    )


def sign_up(db: Session, data: schemas.SignUpIn) -> models.Profile:
    email = normalize_email(data.email)
    restaurant_name = data.restaurant_name.strip()
    if not email or "@" not in email:
        raise ValidationFailed("A valid email is required")
    if get_profile_by_email(db, email):
        raise Conflict("An account already exists for this email")

    profile = models.Profile(
        email=email,
        password_hash=hash_password(data.password),
        full_name=data.full_name.strip() or None,
        job_title=data.job_title.strip() or None,
        establishment=restaurant_name or None,
        restaurant_role="chef" if restaurant_name else None,
    )
    db.add(profile)
    db.flush()

    if restaurant_name:
        restaurant = models.Restaurant(name=restaurant_name, owner_user_id=profile.id)
        db.add(restaurant)
        db.flush()
        profile.restaurant_id = restaurant.id

    db.commit()
    db.refresh(profile)
    logger.info("signed up %s (restaurant %s)", profile.id, profile.restaurant_id)
    return profile


def session_lifetime(settings: Settings, remember: bool) -> timedelta:
    if remember:
        return timedelta(days=settings.remember_days)
    return timedelta(hours=settings.session_hours)


def sign_in(
    db: Session, settings: Settings, email: str, password: str, remember: bool
) -> models.AuthSession:
    profile = get_profile_by_email(db, email)
    if profile is None or not verify_password(password, profile.password_hash):
        raise Unauthorized("Invalid email or password")

    session = models.AuthSession(
        token=secrets.token_hex(32),
        user_id=profile.id,
        remember=remember,
        expires_at=models.utcnow() + session_lifetime(settings, remember),
    )
    db.add(session)
    db.commit()
    db.refresh(session)
    logger.info("signed in %s (remember=%s)", profile.id, remember)
    return session


def sign_out(db: Session, token: str) -> None:
    db.query(models.AuthSession).filter(models.AuthSession.token == token).delete()
    db.commit()


def resolve_session(db: Session, token: Optional[str]) -> AuthContext:
    if not token:
        raise Unauthorized("Missing authorization header")
    session = db.get(models.AuthSession, token)
    if session is None:
        raise Unauthorized("Invalid authorization token")
    if aware(session.expires_at) <= models.utcnow():
        db.delete(session)
        db.commit()
        raise Unauthorized("Session expired")
    profile = db.get(models.Profile, session.user_id)
    if profile is None:
        raise Unauthorized("Invalid authorization token")
    return AuthContext(user=profile, token=token, remember=session.remember)


def update_profile(
    db: Session, ctx: AuthContext, changes: schemas.ProfileUpdate
) -> models.Profile:
    profile = ctx.require_user()
    for field, value in changes.model_dump(exclude_unset=True).items():
        setattr(profile, field, value)
    profile.updated_at = models.utcnow()
    db.add(profile)
    db.commit()
    db.refresh(profile)
    return profile


def delete_account(db: Session, ctx: AuthContext) -> None:
    """Remove the caller and everything only they own."""
    from .crud import delete_recipe_rows

    profile = ctx.require_user()
    user_id = profile.id

    recipe_ids = [
        r.id
        for r in db.query(models.Recipe.id).filter(models.Recipe.user_id == user_id)
    ]
    for recipe_id in recipe_ids:
        delete_recipe_rows(db, recipe_id)

    owned_groups = [
        g.id
        for g in db.query(models.WorkGroup.id).filter(
            models.WorkGroup.created_by == user_id
        )
    ]
    if owned_groups:
        db.query(models.WorkGroupRecipe).filter(
            models.WorkGroupRecipe.group_id.in_(owned_groups)
        ).delete(synchronize_session=False)
        db.query(models.GroupMember).filter(
            models.GroupMember.work_group_id.in_(owned_groups)
        ).delete(synchronize_session=False)
        db.query(models.WorkGroup).filter(
            models.WorkGroup.id.in_(owned_groups)
        ).delete(synchronize_session=False)

    db.query(models.GroupMember).filter(
        models.GroupMember.user_id == user_id
    ).delete(synchronize_session=False)
    db.query(models.Invitation).filter(
        models.Invitation.invited_user_id == user_id
    ).delete(synchronize_session=False)
    db.query(models.AuthSession).filter(
        models.AuthSession.user_id == user_id
    ).delete(synchronize_session=False)

    restaurant_id = profile.restaurant_id
    db.delete(profile)
    db.flush()

    if restaurant_id:
        restaurant = db.get(models.Restaurant, restaurant_id)
        others = (
            db.query(models.Profile)
            .filter(models.Profile.restaurant_id == restaurant_id)
            .count()
        )
        if restaurant is not None and restaurant.owner_user_id == user_id and not others:
            _delete_restaurant(db, restaurant_id)

    db.commit()
    logger.info("deleted account %s", user_id)


def _delete_restaurant(db: Session, restaurant_id: str) -> None:
    from .crud import delete_recipe_rows

    recipe_ids = [
        r.id
        for r in db.query(models.Recipe.id).filter(
            models.Recipe.restaurant_id == restaurant_id
        )
    ]
    for recipe_id in recipe_ids:
        delete_recipe_rows(db, recipe_id)
    group_ids = [
        g.id
        for g in db.query(models.WorkGroup.id).filter(
            models.WorkGroup.restaurant_id == restaurant_id
        )
    ]
    if group_ids:
        db.query(models.WorkGroupRecipe).filter(
            models.WorkGroupRecipe.group_id.in_(group_ids)
        ).delete(synchronize_session=False)
        db.query(models.GroupMember).filter(
            models.GroupMember.work_group_id.in_(group_ids)
        ).delete(synchronize_session=False)
        db.query(models.WorkGroup).filter(
            models.WorkGroup.id.in_(group_ids)
        ).delete(synchronize_session=False)
    db.query(models.Invitation).filter(
        models.Invitation.restaurant_id == restaurant_id
    ).delete(synchronize_session=False)
    db.query(models.Subscription).filter(
        models.Subscription.restaurant_id == restaurant_id
    ).delete(synchronize_session=False)
    db.query(models.Restaurant).filter(
        models.Restaurant.id == restaurant_id
    ).delete(synchronize_session=False)
