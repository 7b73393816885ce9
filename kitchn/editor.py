"""Recipe editor: form state, hydration and the replace-all save.

A recipe is edited as a :class:`~kitchn.schemas.RecipeForm` holding ordered
sections and, per section ``local_id``, an ordered list of ingredient rows.
Saving never diffs: it writes a fresh set of section, ingredient and link
rows and only then deletes the rows captured in the form's snapshot.
"""
import logging
import secrets
from typing import Callable, Dict, List, Optional, Tuple

from .auth import AuthContext
from .errors import KitchnError, NotFound, RecipeSaveError, RecipeValidationError
from .models import utcnow
from .normalize import DEFAULT_CATEGORY, DEFAULT_UNIT, normalize_unit, parse_quantity
from .schemas import (
    FormSnapshot,
    IngredientForm,
    RecipeForm,
    SaveResult,
    SectionForm,
)
from .store import RowStore, ids_of

logger = logging.getLogger(__name__)

DEFAULT_SERVINGS = 4
INGREDIENT_FIELDS = ("quantity", "unit", "designation")


def local_id() -> str:
    return secrets.token_hex(8)


def clean_recipe_id(value: Optional[str]) -> Optional[str]:
    """Treat blank, ``"undefined"`` and ``"null"`` ids as "no recipe yet"."""
    v = (value or "").strip()
    if not v or v in ("undefined", "null"):
        return None
    return v


# ---------- form state ----------

def blank_ingredient() -> IngredientForm:
    return IngredientForm(
        local_id=local_id(), quantity="", unit=DEFAULT_UNIT, designation=""
    )


def blank_section() -> SectionForm:
    return SectionForm(local_id=local_id())


def new_recipe_form(category: str = DEFAULT_CATEGORY) -> RecipeForm:
    section = blank_section()
    return RecipeForm(
        servings=DEFAULT_SERVINGS,
        category=category,
        sections=[section],
        section_ingredients={section.local_id: [blank_ingredient()]},
    )


def add_section(form: RecipeForm) -> SectionForm:
    section = blank_section()
    form.sections.append(section)
    form.section_ingredients[section.local_id] = [blank_ingredient()]
    return section


def remove_section(form: RecipeForm, section_local_id: str) -> None:
    form.sections = [s for s in form.sections if s.local_id != section_local_id]
    form.section_ingredients.pop(section_local_id, None)


def toggle_collapse(form: RecipeForm, section_local_id: str) -> None:
    for section in form.sections:
        if section.local_id == section_local_id:
            section.collapsed = not section.collapsed


def move_section(form: RecipeForm, section_local_id: str, new_index: int) -> None:
    current = next(
        (i for i, s in enumerate(form.sections) if s.local_id == section_local_id),
        None,
    )
    if current is None:
        return
    section = form.sections.pop(current)
    new_index = max(0, min(new_index, len(form.sections)))
    form.sections.insert(new_index, section)


def add_ingredient(form: RecipeForm, section_local_id: str) -> IngredientForm:
    row = blank_ingredient()
    form.section_ingredients.setdefault(section_local_id, []).append(row)
    return row


def remove_ingredient(form: RecipeForm, section_local_id: str, index: int) -> None:
    rows = form.section_ingredients.get(section_local_id, [])
    if 0 <= index < len(rows):
        rows.pop(index)


def update_ingredient(
    form: RecipeForm, section_local_id: str, index: int, field: str, value
) -> None:
    if field not in INGREDIENT_FIELDS:
        raise ValueError(f"Unknown ingredient field '{field}'")
    rows = form.section_ingredients.get(section_local_id, [])
    if 0 <= index < len(rows):
        setattr(rows[index], field, value)


# ---------- hydration ----------

def capture_snapshot(store: RowStore, recipe_id: str) -> FormSnapshot:
    sections = store.select("recipe_sections", ["id"], {"recipe_id": recipe_id})
    ingredients = store.select("ingredients", ["id"], {"recipe_id": recipe_id})
    return FormSnapshot(section_ids=ids_of(sections), ingredient_ids=ids_of(ingredients))


def load_recipe_form(
    store: RowStore, recipe_id: Optional[str], *, category: str = DEFAULT_CATEGORY
) -> RecipeForm:
    """Rebuild the editable form of a stored recipe.

    Ingredients are placed into sections by walking the section/ingredient
    links in ``order_index`` order. A section with no links gets a single
    blank row so it can still be filled in.
    """
    recipe_id = clean_recipe_id(recipe_id)
    if recipe_id is None:
        return new_recipe_form(category)

    found = store.select("recipes", filters={"id": recipe_id})
    if not found:
        raise NotFound("Recipe not found")
    recipe = found[0]

    sections = store.select(
        "recipe_sections",
        ["id", "title", "instructions", "order_index"],
        {"recipe_id": recipe_id},
        order_by="order_index",
    )
    ingredients = store.select(
        "ingredients", filters={"recipe_id": recipe_id}, order_by="order_index"
    )
    section_ids = ids_of(sections)
    links = []
    if section_ids:
        links = store.select(
            "section_ingredients",
            ["section_id", "ingredient_id", "order_index"],
            {"section_id": section_ids},
            order_by="order_index",
        )

    section_forms = [
        SectionForm(
            local_id=local_id(),
            db_id=s["id"],
            title=s.get("title") or "",
            instructions=s.get("instructions") or "",
        )
        for s in sections
    ]
    if not section_forms:
        section_forms = [blank_section()]

    by_db_id = {s.db_id: s for s in section_forms if s.db_id}
    rows: Dict[str, List[IngredientForm]] = {
        s.local_id: [blank_ingredient()] for s in section_forms
    }
    ingredient_by_id = {i["id"]: i for i in ingredients}
    filled = set()

    for link in sorted(links, key=lambda link: link.get("order_index") or 0):
        section = by_db_id.get(link["section_id"])
        ingredient = ingredient_by_id.get(link["ingredient_id"])
        if section is None or ingredient is None:
            continue
        if section.local_id not in filled:
            rows[section.local_id] = []
            filled.add(section.local_id)
        quantity = ingredient.get("quantity")
        rows[section.local_id].append(
            IngredientForm(
                local_id=local_id(),
                db_id=ingredient["id"],
                quantity="" if quantity is None else quantity,
                unit=ingredient.get("unit") or DEFAULT_UNIT,
                designation=ingredient.get("designation") or "",
            )
        )

    return RecipeForm(
        recipe_id=recipe["id"],
        title=recipe.get("title") or "",
        servings=int(recipe.get("servings") or DEFAULT_SERVINGS),
        category=recipe.get("category") or category,
        notes=recipe.get("notes") or "",
        sections=section_forms,
        section_ingredients=rows,
        snapshot=FormSnapshot(
            section_ids=section_ids, ingredient_ids=ids_of(ingredients)
        ),
    )


# ---------- save ----------

StagedIngredients = Dict[str, List[dict]]


def _validate(ctx: Optional[AuthContext], form: RecipeForm) -> Tuple[str, StagedIngredients]:
    if ctx is None or ctx.user is None:
        raise RecipeValidationError("You must be signed in to save a recipe.")
    title = (form.title or "").strip()
    if not title:
        raise RecipeValidationError("Title is required.")

    staged: StagedIngredients = {}
    for section in form.sections:
        kept = []
        for item in form.section_ingredients.get(section.local_id, []):
            designation = str(item.designation or "").strip()
            if not designation:
                # rows left empty by the user, not an error
                continue
            try:
                quantity = parse_quantity(item.quantity)
            except ValueError:
                raise RecipeValidationError(
                    f"Invalid quantity for '{designation}'."
                ) from None
            kept.append(
                {
                    "quantity": quantity,
                    "unit": normalize_unit(item.unit),
                    "designation": designation,
                }
            )
        staged[section.local_id] = kept
    return title, staged


def _error_text(exc: Exception) -> str:
    # SQLAlchemy wraps driver errors; report the driver's own message
    orig = getattr(exc, "orig", None)
    return str(orig or exc) or exc.__class__.__name__


def save_recipe(
    store: RowStore,
    ctx: Optional[AuthContext],
    form: RecipeForm,
    *,
    default_category: str = DEFAULT_CATEGORY,
    on_created: Optional[Callable[[str], None]] = None,
    on_saved: Optional[Callable[[str], None]] = None,
) -> SaveResult:
    """Persist ``form`` by inserting a fresh row set, then deleting the old one.

    Order of calls: recipe upsert, sections, ingredients, links, then removal
    of the links, sections and ingredients listed in ``form.snapshot``. The
    first failing call aborts the save with :class:`RecipeSaveError`. The
    whole sequence runs inside ``store.atomic()``, so a transactional store
    keeps nothing from a failed save while a best-effort store keeps whatever
    had already been written.
    """
    title, staged = _validate(ctx, form)

    recipe_id = clean_recipe_id(form.recipe_id)
    created = recipe_id is None
    snapshot = form.snapshot or FormSnapshot()
    old_section_ids = [i for i in snapshot.section_ids if i]
    old_ingredient_ids = [i for i in snapshot.ingredient_ids if i]

    now = utcnow()
    payload = {
        "title": title,
        "servings": max(1, int(form.servings or 1)),
        "category": (form.category or "").strip() or default_category,
        "notes": (form.notes or "").strip(),
        "updated_at": now,
    }

    step = "recipe"
    try:
        with store.atomic():
            if created:
                payload.update(
                    user_id=ctx.user_id,
                    restaurant_id=ctx.restaurant_id,
                    created_at=now,
                )
                recipe_id = store.insert("recipes", [payload])[0]["id"]
                logger.info("created recipe %s", recipe_id)
            elif not store.update("recipes", payload, {"id": recipe_id}):
                raise RecipeSaveError(f"Recipe {recipe_id} not found", step=step)

            step = "sections"
            inserted_sections = store.insert(
                "recipe_sections",
                [
                    {
                        "recipe_id": recipe_id,
                        "title": s.title.strip() or None,
                        "instructions": s.instructions.strip() or None,
                        "order_index": index,
                    }
                    for index, s in enumerate(form.sections)
                ],
            )
            by_order = {int(r["order_index"]): r["id"] for r in inserted_sections}

            step = "ingredients"
            ingredient_rows = []
            pending_links = []
            for index, section in enumerate(form.sections):
                section_id = by_order.get(index)
                if not section_id:
                    continue
                for position, item in enumerate(staged[section.local_id]):
                    ingredient_rows.append(
                        dict(item, recipe_id=recipe_id, order_index=len(ingredient_rows))
                    )
                    pending_links.append(
                        (section_id, len(ingredient_rows) - 1, position)
                    )
            inserted_ingredients = store.insert("ingredients", ingredient_rows)

            step = "links"
            links = []
            for section_id, staged_index, position in pending_links:
                if staged_index >= len(inserted_ingredients):
                    continue
                ingredient_id = inserted_ingredients[staged_index].get("id")
                if not ingredient_id:
                    continue
                links.append(
                    {
                        "section_id": section_id,
                        "ingredient_id": ingredient_id,
                        "order_index": position,
                    }
                )
            store.insert("section_ingredients", links)
            logger.debug(
                "recipe %s: wrote %d sections, %d ingredients, %d links",
                recipe_id,
                len(inserted_sections),
                len(inserted_ingredients),
                len(links),
            )

            step = "cleanup"
            if old_section_ids:
                store.delete("section_ingredients", {"section_id": old_section_ids})
                store.delete(
                    "recipe_sections",
                    {"id": old_section_ids, "recipe_id": recipe_id},
                )
            if old_ingredient_ids:
                store.delete(
                    "ingredients",
                    {"id": old_ingredient_ids, "recipe_id": recipe_id},
                )
    except KitchnError:
        raise
    except Exception as exc:
        message = _error_text(exc)
        if step == "cleanup":
            logger.error(
                "recipe %s saved but old rows were not removed: %s", recipe_id, message
            )
        else:
            logger.warning("saving recipe %s failed at %s: %s", recipe_id, step, message)
        raise RecipeSaveError(
            message, step=step, cleanup_failed=step == "cleanup"
        ) from exc

    if created:
        if on_created:
            on_created(recipe_id)
    elif on_saved:
        on_saved(recipe_id)
    return SaveResult(recipe_id=recipe_id, created=created)
