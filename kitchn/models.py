import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from .db import Base


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Restaurant(Base):
    __tablename__ = "restaurants"
    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(200), nullable=False)
    owner_user_id = Column(String(36), nullable=True, index=True)
    current_plan_id = Column(
        String(36), ForeignKey("subscription_plans.id"), nullable=True
    )
    created_at = Column(DateTime(timezone=True), default=utcnow)


class Profile(Base):
    __tablename__ = "profiles"
    id = Column(String(36), primary_key=True, default=new_id)
    email = Column(String(320), unique=True, index=True, nullable=False)
    password_hash = Column(String(200), nullable=True)
    full_name = Column(String(200), nullable=True)
    job_title = Column(String(200), nullable=True)
    establishment = Column(String(200), nullable=True)
    restaurant_id = Column(
        String(36), ForeignKey("restaurants.id"), nullable=True, index=True
    )
    restaurant_role = Column(String(50), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow)


class AuthSession(Base):
    __tablename__ = "auth_sessions"
    token = Column(String(64), primary_key=True)
    user_id = Column(
        String(36), ForeignKey("profiles.id"), nullable=False, index=True
    )
    remember = Column(Boolean, nullable=False, default=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class Recipe(Base):
    __tablename__ = "recipes"
    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("profiles.id"), nullable=True)
    restaurant_id = Column(
        String(36), ForeignKey("restaurants.id"), nullable=True, index=True
    )
    title = Column(String(200), nullable=False)
    category = Column(String(50), nullable=False, default="Autre")
    servings = Column(Integer, nullable=False, default=4)
    notes = Column(Text, nullable=True)
    is_base_recipe = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow)


class RecipeSection(Base):
    __tablename__ = "recipe_sections"
    id = Column(String(36), primary_key=True, default=new_id)
    recipe_id = Column(
        String(36), ForeignKey("recipes.id"), nullable=False, index=True
    )
    title = Column(String(200), nullable=True)
    instructions = Column(Text, nullable=True)
    order_index = Column(Integer, nullable=False, default=0)


class Ingredient(Base):
    __tablename__ = "ingredients"
    id = Column(String(36), primary_key=True, default=new_id)
    recipe_id = Column(
        String(36), ForeignKey("recipes.id"), nullable=False, index=True
    )
    order_index = Column(Integer, nullable=False, default=0)
    quantity = Column(Float, nullable=True)
    unit = Column(String(30), nullable=True)
    designation = Column(String(200), nullable=False)


class SectionIngredient(Base):
    __tablename__ = "section_ingredients"
    section_id = Column(
        String(36), ForeignKey("recipe_sections.id"), primary_key=True
    )
    ingredient_id = Column(
        String(36), ForeignKey("ingredients.id"), primary_key=True
    )
    order_index = Column(Integer, nullable=False, default=0)


class Invitation(Base):
    __tablename__ = "invitations"
    id = Column(String(36), primary_key=True, default=new_id)
    restaurant_id = Column(
        String(36), ForeignKey("restaurants.id"), nullable=False, index=True
    )
    email = Column(String(320), nullable=False)
    role = Column(String(50), nullable=False)
    token = Column(String(64), unique=True, nullable=False)
    invited_user_id = Column(
        String(36), ForeignKey("profiles.id"), nullable=True, index=True
    )
    expires_at = Column(DateTime(timezone=True), nullable=True)
    accepted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class WorkGroup(Base):
    __tablename__ = "work_groups"
    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    restaurant_id = Column(
        String(36), ForeignKey("restaurants.id"), nullable=True
    )
    created_by = Column(String(36), ForeignKey("profiles.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class GroupMember(Base):
    __tablename__ = "group_members"
    __table_args__ = (UniqueConstraint("work_group_id", "user_id"),)
    id = Column(String(36), primary_key=True, default=new_id)
    work_group_id = Column(
        String(36), ForeignKey("work_groups.id"), nullable=False, index=True
    )
    user_id = Column(
        String(36), ForeignKey("profiles.id"), nullable=False, index=True
    )
    role = Column(String(20), nullable=False, default="member")


class WorkGroupRecipe(Base):
    __tablename__ = "work_group_recipes"
    group_id = Column(String(36), ForeignKey("work_groups.id"), primary_key=True)
    recipe_id = Column(String(36), ForeignKey("recipes.id"), primary_key=True)
    shared_at = Column(DateTime(timezone=True), default=utcnow)


class SubscriptionPlan(Base):
    __tablename__ = "subscription_plans"
    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(100), nullable=False)
    price_cents = Column(Integer, nullable=False, default=0)
    interval = Column(String(20), nullable=False, default="month")
    stripe_price_id = Column(String(100), nullable=True)


class Subscription(Base):
    __tablename__ = "subscriptions"
    id = Column(String(36), primary_key=True, default=new_id)
    restaurant_id = Column(
        String(36), ForeignKey("restaurants.id"), unique=True, nullable=False
    )
    plan_id = Column(String(36), ForeignKey("subscription_plans.id"), nullable=True)
    stripe_customer_id = Column(String(100), nullable=True)
    stripe_subscription_id = Column(String(100), unique=True, nullable=True)
    status = Column(String(30), nullable=True)
    current_period_start = Column(DateTime(timezone=True), nullable=True)
    current_period_end = Column(DateTime(timezone=True), nullable=True)
    cancel_at_period_end = Column(Boolean, nullable=False, default=False)
