import logging
from typing import List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from . import models, schemas
from .auth import AuthContext
from .errors import Forbidden, NotFound
from .normalize import scale_quantity

logger = logging.getLogger(__name__)


def member_group_ids(db: Session, user_id: str) -> List[str]:
    """Groups the user belongs to, as a member or as their creator."""
    member_of = [
        m.work_group_id
        for m in db.query(models.GroupMember.work_group_id).filter(
            models.GroupMember.user_id == user_id
        )
    ]
    created = [
        g.id
        for g in db.query(models.WorkGroup.id).filter(
            models.WorkGroup.created_by == user_id
        )
    ]
    return list(dict.fromkeys(member_of + created))


def can_edit(ctx: AuthContext, recipe: models.Recipe) -> bool:
    if ctx.user is None:
        return False
    if recipe.restaurant_id and recipe.restaurant_id == ctx.restaurant_id:
        return True
    return recipe.user_id == ctx.user_id


def can_read(db: Session, ctx: AuthContext, recipe: models.Recipe) -> bool:
    if can_edit(ctx, recipe):
        return True
    if ctx.user is None:
        return False
    groups = member_group_ids(db, ctx.user_id)
    if not groups:
        return False
    shared = (
        db.query(models.WorkGroupRecipe)
        .filter(
            models.WorkGroupRecipe.recipe_id == recipe.id,
            models.WorkGroupRecipe.group_id.in_(groups),
        )
        .first()
    )
    return shared is not None


def get_recipe(db: Session, recipe_id: str) -> Optional[models.Recipe]:
    return db.query(models.Recipe).filter(models.Recipe.id == recipe_id).first()


def get_readable_recipe(db: Session, ctx: AuthContext, recipe_id: str) -> models.Recipe:
    ctx.require_user()
    recipe = get_recipe(db, recipe_id)
    if recipe is None or not can_read(db, ctx, recipe):
        raise NotFound("Recipe not found")
    return recipe


def get_editable_recipe(db: Session, ctx: AuthContext, recipe_id: str) -> models.Recipe:
    recipe = get_readable_recipe(db, ctx, recipe_id)
    if not can_edit(ctx, recipe):
        raise Forbidden("This recipe is shared read-only")
    return recipe


def list_recipes(
    db: Session,
    ctx: AuthContext,
    q: Optional[str] = None,
    category: Optional[str] = None,
) -> List[models.Recipe]:
    ctx.require_user()
    query = db.query(models.Recipe)
    if ctx.restaurant_id:
        query = query.filter(
            or_(
                models.Recipe.restaurant_id == ctx.restaurant_id,
                models.Recipe.user_id == ctx.user_id,
            )
        )
    else:
        query = query.filter(models.Recipe.user_id == ctx.user_id)
    if q and q.strip():
        query = query.filter(models.Recipe.title.ilike(f"%{q.strip()}%"))
    if category:
        query = query.filter(models.Recipe.category == category)
    return query.order_by(models.Recipe.created_at.desc()).all()


def recipe_detail(db: Session, recipe: models.Recipe) -> schemas.RecipeDetail:
    sections = (
        db.query(models.RecipeSection)
        .filter(models.RecipeSection.recipe_id == recipe.id)
        .order_by(models.RecipeSection.order_index)
        .all()
    )
    section_ids = [s.id for s in sections]
    by_section = {s.id: [] for s in sections}
    if section_ids:
        rows = (
            db.query(models.SectionIngredient, models.Ingredient)
            .join(
                models.Ingredient,
                models.Ingredient.id == models.SectionIngredient.ingredient_id,
            )
            .filter(models.SectionIngredient.section_id.in_(section_ids))
            .order_by(models.SectionIngredient.order_index)
            .all()
        )
        for link, ingredient in rows:
            by_section[link.section_id].append(
                schemas.IngredientOut(
                    id=ingredient.id,
                    quantity=ingredient.quantity,
                    unit=ingredient.unit,
                    designation=ingredient.designation,
                )
            )

    return schemas.RecipeDetail(
        id=recipe.id,
        title=recipe.title,
        category=recipe.category,
        servings=recipe.servings,
        restaurant_id=recipe.restaurant_id,
        updated_at=recipe.updated_at,
        notes=recipe.notes,
        sections=[
            schemas.SectionOut(
                id=s.id,
                title=s.title,
                instructions=s.instructions,
                order_index=s.order_index,
                ingredients=by_section[s.id],
            )
            for s in sections
        ],
    )


def get_recipe_detail(db: Session, ctx: AuthContext, recipe_id: str) -> schemas.RecipeDetail:
    return recipe_detail(db, get_readable_recipe(db, ctx, recipe_id))


def scale_recipe(detail: schemas.RecipeDetail, servings: int) -> schemas.RecipeDetail:
    """Copy of ``detail`` with every quantity scaled to ``servings``."""
    if servings < 1:
        raise ValueError("servings must be at least 1")
    scaled = detail.model_copy(deep=True)
    for section in scaled.sections:
        for ingredient in section.ingredients:
            ingredient.quantity = scale_quantity(
                ingredient.quantity, servings, detail.servings
            )
    scaled.servings = servings
    return scaled


def delete_recipe_rows(db: Session, recipe_id: str) -> None:
    """Delete a recipe and all rows hanging off it, without committing."""
    section_ids = [
        s.id
        for s in db.query(models.RecipeSection.id).filter(
            models.RecipeSection.recipe_id == recipe_id
        )
    ]
    if section_ids:
        db.query(models.SectionIngredient).filter(
            models.SectionIngredient.section_id.in_(section_ids)
        ).delete(synchronize_session=False)
    db.query(models.RecipeSection).filter(
        models.RecipeSection.recipe_id == recipe_id
    ).delete(synchronize_session=False)
    db.query(models.Ingredient).filter(
        models.Ingredient.recipe_id == recipe_id
    ).delete(synchronize_session=False)
    db.query(models.WorkGroupRecipe).filter(
        models.WorkGroupRecipe.recipe_id == recipe_id
    ).delete(synchronize_session=False)
    db.query(models.Recipe).filter(models.Recipe.id == recipe_id).delete(
        synchronize_session=False
    )


def delete_recipe(db: Session, ctx: AuthContext, recipe_id: str) -> None:
    get_editable_recipe(db, ctx, recipe_id)
    delete_recipe_rows(db, recipe_id)
    db.commit()
    logger.info("deleted recipe %s", recipe_id)
