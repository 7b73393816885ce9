# flake8: noqa
import json
from types import SimpleNamespace

import pytest
from openai import OpenAIError

from kitchn import app as app_module
from kitchn import importer
from kitchn.config import Settings, get_settings
from kitchn.errors import (
    ConfigurationError,
    ExternalServiceError,
    UnsupportedDocument,
    ValidationFailed,
)
from kitchn.importer import RecipeParser, extract_text, parsed_to_form
from kitchn.schemas import ParsedRecipe

PARSED = {
    "title": "Foie gras, sauce lie de vin",
    "servings": 6,
    "sections": [
        {
            "title": "Foie gras",
            "ingredients": [
                {"quantity": 0.5, "unit": "kg", "designation": "foie gras cru"},
                {"quantity": 0, "unit": "QS", "designation": "sel"},
                {"quantity": 1, "unit": "pièce", "designation": ""},
            ],
            "instructions": "Déveiner et assaisonner.",
        },
        {
            "title": "Sauce lie de vin",
            "ingredients": [{"quantity": 75, "unit": "cl", "designation": "vin rouge"}],
            "instructions": "Réduire.",
        },
    ],
    "general_instructions": "Dresser sur assiette chaude.",
}


class FakeParser:
    def __init__(self, payload=PARSED):
        self.payload = payload
        self.texts = []

    def parse(self, text):
        self.texts.append(text)
        return ParsedRecipe.model_validate(self.payload)


class FakeCompletions:
    def __init__(self, content=None, error=None):
        self.content = content
        self.error = error
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error:
            raise self.error
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def fake_client(completions):
    return SimpleNamespace(chat=SimpleNamespace(completions=completions))


@pytest.fixture
def parser():
    fake = FakeParser()
    app_module.app.dependency_overrides[app_module.get_parser] = lambda: fake
    yield fake
    del app_module.app.dependency_overrides[app_module.get_parser]


def upload(client, user, data=b"Foie gras pour 6 personnes", name="recette.txt", ctype="text/plain"):
    return client.post(
        "/api/import", files={"file": (name, data, ctype)}, headers=user.headers
    )


# ---------- text extraction ----------

def test_extract_plain_text_and_markdown():
    assert extract_text("Pâte brisée".encode("utf-8"), "a.txt", "text/plain") == "Pâte brisée"
    assert extract_text(b"# Sauce", "notes.md", None) == "# Sauce"
    assert extract_text(b"x", "sans-extension", "text/plain; charset=utf-8") == "x"


def test_extract_word_documents_with_mammoth(monkeypatch):
    seen = []

    def fake_extract(fileobj):
        seen.append(fileobj.read())
        return SimpleNamespace(value="Tarte Tatin")

    monkeypatch.setattr(importer.mammoth, "extract_raw_text", fake_extract)
    assert extract_text(b"docx-bytes", "tatin.docx") == "Tarte Tatin"
    assert extract_text(b"doc-bytes", "vieux", importer.DOC_TYPE) == "Tarte Tatin"
    assert seen == [b"docx-bytes", b"doc-bytes"]


def test_extract_pdf_pages(monkeypatch):
    pages = [SimpleNamespace(extract_text=lambda: "Page 1"), SimpleNamespace(extract_text=lambda: None)]
    monkeypatch.setattr(importer, "PdfReader", lambda stream: SimpleNamespace(pages=pages))
    assert extract_text(b"%PDF", "menu.pdf") == "Page 1\n"


def test_unsupported_type_is_rejected():
    with pytest.raises(UnsupportedDocument):
        extract_text(b"\x89PNG", "photo.png", "image/png")


# ---------- AI parser ----------

def test_parser_requests_json_and_validates_shape():
    completions = FakeCompletions(content=json.dumps(PARSED))
    parser = RecipeParser("sk-test", client=fake_client(completions))

    parsed = parser.parse("texte")
    assert parsed.title == PARSED["title"]
    assert len(parsed.sections) == 2

    call = completions.calls[0]
    assert call["model"] == "gpt-4o-mini"
    assert call["temperature"] == 0.3
    assert call["response_format"] == {"type": "json_object"}
    assert call["messages"][0]["role"] == "system"
    assert call["messages"][1]["content"].endswith("texte")


def test_parser_without_key_is_a_configuration_error():
    with pytest.raises(ConfigurationError):
        RecipeParser(None).parse("texte")


@pytest.mark.parametrize(
    "completions",
    [
        FakeCompletions(error=OpenAIError("rate limited")),
        FakeCompletions(content=None),
        FakeCompletions(content="pas du json"),
    ],
)
def test_parser_failures_are_external_errors(completions):
    parser = RecipeParser("sk-test", client=fake_client(completions))
    with pytest.raises(ExternalServiceError):
        parser.parse("texte")


def test_parsed_recipe_to_form():
    form = parsed_to_form(ParsedRecipe.model_validate(PARSED), category="Plat")
    assert form.servings == 6
    assert form.category == "Plat"
    assert form.notes == "Dresser sur assiette chaude."
    first = form.section_ingredients[form.sections[0].local_id]
    assert [i.quantity for i in first] == [0.5, "", 1.0]


# ---------- endpoint ----------

def test_import_creates_recipe(client, make_user, parser):
    chef = make_user()
    res = upload(client, chef)
    assert res.status_code == 200, res.text
    result = res.json()
    assert result["success"] is True
    assert result["title"] == PARSED["title"]
    assert result["sections_count"] == 2
    assert parser.texts == ["Foie gras pour 6 personnes"]

    detail = client.get(f"/api/recipes/{result['recipe_id']}", headers=chef.headers).json()
    assert detail["servings"] == 6
    assert detail["notes"] == "Dresser sur assiette chaude."
    first = detail["sections"][0]
    assert first["instructions"] == "Déveiner et assaisonner."
    # the row without designation is dropped, "QS" keeps no quantity
    assert [(i["designation"], i["quantity"], i["unit"]) for i in first["ingredients"]] == [
        ("foie gras cru", 0.5, "kg"),
        ("sel", None, "QS"),
    ]


def test_import_rejects_bad_uploads(client, make_user, parser):
    chef = make_user()
    assert upload(client, chef, data=b"   ").status_code == 400
    res = upload(client, chef, name="photo.png", ctype="image/png")
    assert res.status_code == 400
    assert res.json()["success"] is False


def test_import_without_sections_fails(client, make_user, parser):
    chef = make_user()
    parser.payload = {"title": "Rien", "sections": []}
    assert upload(client, chef).status_code == 400
    assert client.get("/api/recipes", headers=chef.headers).json() == []


def test_import_requires_a_restaurant(client, make_user, parser):
    solo = make_user(email="solo@example.com", restaurant_name="")
    res = upload(client, solo)
    assert res.status_code == 400
    assert res.json()["error"] == "User has no restaurant"


def test_import_size_limit(client, make_user, parser):
    chef = make_user()
    previous = app_module.app.dependency_overrides[get_settings]
    app_module.app.dependency_overrides[get_settings] = lambda: Settings(
        _env_file=None, max_upload_bytes=8
    )
    try:
        res = upload(client, chef, data=b"x" * 9)
    finally:
        app_module.app.dependency_overrides[get_settings] = previous
    assert res.status_code == 413
