"""Seed recipes from data/recipes.json for an existing account.

Usage: python scripts/import_data.py owner@example.com [path/to/recipes.json]
"""
import json
import sys
from pathlib import Path

from kitchn import models
from kitchn.auth import AuthContext, get_profile_by_email
from kitchn.config import get_settings
from kitchn.db import SessionLocal, init_db
from kitchn.editor import add_section, local_id, new_recipe_form, save_recipe
from kitchn.schemas import IngredientForm
from kitchn.store import SqlRowStore


def recipe_form(data: dict, category: str):
    form = new_recipe_form(category)
    form.title = data.get("title") or data.get("name") or ""
    form.servings = data.get("servings") or form.servings
    form.category = data.get("category") or category
    form.notes = data.get("notes") or ""
    form.sections = []
    form.section_ingredients = {}
    for part in data.get("sections") or [{"ingredients": data.get("ingredients", [])}]:
        section = add_section(form)
        section.title = part.get("title") or ""
        section.instructions = part.get("instructions") or ""
        rows = []
        for item in part.get("ingredients", []):
            if isinstance(item, str):
                item = {"designation": item}
            rows.append(
                IngredientForm(
                    local_id=local_id(),
                    quantity=item.get("quantity", ""),
                    unit=item.get("unit") or "g",
                    designation=item.get("designation") or "",
                )
            )
        form.section_ingredients[section.local_id] = rows
    return form


def main():
    if len(sys.argv) < 2:
        print(__doc__)
        return
    init_db()
    p = Path(sys.argv[2]) if len(sys.argv) > 2 else (
        Path(__file__).resolve().parents[1] / "data" / "recipes.json"
    )
    if not p.exists():
        print(f"{p} not found")
        return
    data = json.loads(p.read_text(encoding="utf-8"))

    settings = get_settings()
    db = SessionLocal()
    try:
        owner = get_profile_by_email(db, sys.argv[1])
        if owner is None:
            print(f"no account for {sys.argv[1]}")
            return
        ctx = AuthContext(user=owner)
        store = SqlRowStore(db)
        added = 0
        for r in data:
            form = recipe_form(r, settings.default_category)
            if not form.title.strip():
                continue
            exists = (
                db.query(models.Recipe)
                .filter(
                    models.Recipe.title == form.title.strip(),
                    models.Recipe.user_id == owner.id,
                )
                .first()
            )
            if exists:
                continue
            save_recipe(store, ctx, form, default_category=settings.default_category)
            added += 1
    finally:
        db.close()
    print(f"Imported {added} recipes")


if __name__ == "__main__":
    main()
