# flake8: noqa
import json


def tarte_form(title="Tarte aux pommes", servings=4):
    return {
        "title": title,
        "servings": servings,
        "category": "Dessert",
        "notes": "Servir tiède",
        "sections": [
            {"local_id": "s1", "title": "Pâte"},
            {"local_id": "s2", "title": "Garniture", "instructions": "Cuire 30 min"},
        ],
        "section_ingredients": {
            "s1": [
                {"local_id": "i1", "quantity": 200, "unit": "g", "designation": "farine"},
                {"local_id": "i2", "quantity": "", "unit": "g", "designation": ""},
            ],
            "s2": [
                {"local_id": "i3", "quantity": "4", "unit": "unité", "designation": "pommes"},
                {"local_id": "i4", "quantity": "0,5", "unit": "kg", "designation": "sucre"},
            ],
        },
    }


def create_recipe(client, user, **kwargs):
    res = client.post("/api/recipes/form", json=tarte_form(**kwargs), headers=user.headers)
    assert res.status_code == 201, res.text
    return res.json()["recipe_id"]


def test_requests_without_token_are_rejected(client):
    res = client.get("/api/recipes")
    assert res.status_code == 401
    assert res.json() == {"success": False, "error": "Missing authorization header"}

    res = client.get("/api/recipes", headers={"Authorization": "Bearer nope"})
    assert res.status_code == 401


def test_create_then_read_recipe(client, make_user):
    chef = make_user()
    rid = create_recipe(client, chef)

    res = client.get(f"/api/recipes/{rid}", headers=chef.headers)
    assert res.status_code == 200
    data = res.json()
    assert data["title"] == "Tarte aux pommes"
    assert data["notes"] == "Servir tiède"
    assert [s["title"] for s in data["sections"]] == ["Pâte", "Garniture"]
    assert [i["designation"] for i in data["sections"][0]["ingredients"]] == ["farine"]
    assert [i["quantity"] for i in data["sections"][1]["ingredients"]] == [4.0, 0.5]


def test_list_and_search(client, make_user):
    chef = make_user()
    create_recipe(client, chef, title="Apple Pie")
    create_recipe(client, chef, title="Banana Bread")
    create_recipe(client, chef, title="Cherry Tart")

    res = client.get("/api/recipes", headers=chef.headers)
    assert res.status_code == 200
    assert len(res.json()) == 3

    res = client.get("/api/recipes?q=banana", headers=chef.headers)
    items = res.json()
    assert len(items) == 1
    assert items[0]["title"] == "Banana Bread"

    res = client.get("/api/recipes?category=Plat", headers=chef.headers)
    assert res.json() == []


def test_update_keeps_identifier_and_replaces_sections(client, make_user):
    chef = make_user()
    rid = create_recipe(client, chef)

    form = client.get(f"/api/recipes/{rid}/form", headers=chef.headers).json()
    assert form["recipe_id"] == rid
    assert len(form["snapshot"]["section_ids"]) == 2
    form["title"] = "Tarte fine"
    form["sections"] = form["sections"][:1]

    res = client.post("/api/recipes/form", json=form, headers=chef.headers)
    assert res.status_code == 200
    assert res.json() == {"recipe_id": rid, "created": False}

    data = client.get(f"/api/recipes/{rid}", headers=chef.headers).json()
    assert data["title"] == "Tarte fine"
    assert len(data["sections"]) == 1


def test_update_without_snapshot_still_replaces_old_rows(client, make_user):
    chef = make_user()
    rid = create_recipe(client, chef)

    body = tarte_form(title="Tarte v2")
    body["recipe_id"] = rid
    res = client.post("/api/recipes/form", json=body, headers=chef.headers)
    assert res.status_code == 200

    data = client.get(f"/api/recipes/{rid}", headers=chef.headers).json()
    assert len(data["sections"]) == 2


def test_missing_title_returns_validation_error(client, make_user):
    chef = make_user()
    res = client.post("/api/recipes/form", json=tarte_form(title="  "), headers=chef.headers)
    assert res.status_code == 400
    assert res.json()["success"] is False
    assert client.get("/api/recipes", headers=chef.headers).json() == []


def test_non_finite_quantity_is_rejected(client, make_user):
    chef = make_user()
    body = tarte_form()
    body["section_ingredients"]["s1"][0]["quantity"] = float("nan")
    res = client.post(
        "/api/recipes/form",
        content=json.dumps(body),  # serialises the bare NaN literal
        headers=dict(chef.headers, **{"Content-Type": "application/json"}),
    )
    assert res.status_code == 400
    assert res.json()["error"] == "Invalid quantity for 'farine'."
    assert client.get("/api/recipes", headers=chef.headers).json() == []


def test_servings_zero_is_clamped(client, make_user):
    chef = make_user()
    rid = create_recipe(client, chef, servings=0)
    assert client.get(f"/api/recipes/{rid}", headers=chef.headers).json()["servings"] == 1


def test_scaled_recipe(client, make_user):
    chef = make_user()
    rid = create_recipe(client, chef)

    res = client.get(f"/api/recipes/{rid}/scaled?servings=6", headers=chef.headers)
    assert res.status_code == 200
    data = res.json()
    assert data["servings"] == 6
    assert data["sections"][0]["ingredients"][0]["quantity"] == 300.0
    assert data["sections"][1]["ingredients"][1]["quantity"] == 0.75

    res = client.get(f"/api/recipes/{rid}/scaled?servings=0", headers=chef.headers)
    assert res.status_code == 422


def test_editor_new_form(client, make_user):
    chef = make_user()
    res = client.get("/api/editor/new", headers=chef.headers)
    assert res.status_code == 200
    form = res.json()
    assert form["recipe_id"] is None
    assert len(form["sections"]) == 1
    only = form["sections"][0]["local_id"]
    assert form["section_ingredients"][only][0]["designation"] == ""


def test_delete_recipe(client, make_user):
    chef = make_user()
    rid = create_recipe(client, chef)

    res = client.delete(f"/api/recipes/{rid}", headers=chef.headers)
    assert res.status_code == 200
    assert res.json().get("deleted") is True

    assert client.get(f"/api/recipes/{rid}", headers=chef.headers).status_code == 404
    assert client.get("/api/recipes", headers=chef.headers).json() == []


def test_other_restaurants_cannot_see_or_edit(client, make_user):
    chef = make_user()
    rival = make_user(email="rival@example.com", restaurant_name="Chez Rival")
    rid = create_recipe(client, chef)

    assert client.get(f"/api/recipes/{rid}", headers=rival.headers).status_code == 404
    assert client.get(f"/api/recipes/{rid}/form", headers=rival.headers).status_code == 404
    assert client.delete(f"/api/recipes/{rid}", headers=rival.headers).status_code == 404
    assert client.get("/api/recipes", headers=rival.headers).json() == []

    body = tarte_form(title="Stolen")
    body["recipe_id"] = rid
    res = client.post("/api/recipes/form", json=body, headers=rival.headers)
    assert res.status_code == 404


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}
