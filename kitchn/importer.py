"""Import a recipe document: extract its text, structure it with an LLM, save it."""
import io
import json
import logging
import zipfile
from typing import Optional

import mammoth
from openai import OpenAI, OpenAIError
from pydantic import ValidationError
from pypdf import PdfReader
from pypdf.errors import PdfReadError

from .auth import AuthContext
from .config import Settings
from .editor import DEFAULT_SERVINGS, local_id, save_recipe
from .drive import DriveClient
from .errors import (
    ConfigurationError,
    ExternalServiceError,
    PayloadTooLarge,
    UnsupportedDocument,
    ValidationFailed,
)
from .normalize import DEFAULT_CATEGORY
from .schemas import (
    ImportResult,
    IngredientForm,
    ParsedRecipe,
    RecipeForm,
    SectionForm,
)
from .store import RowStore

logger = logging.getLogger(__name__)

DOCX_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
DOC_TYPE = "application/msword"
PDF_TYPE = "application/pdf"

SYSTEM_PROMPT = """Tu es un expert cuisinier français spécialisé dans la transformation de recettes en format structuré.

OBJECTIF: Transformer le texte d'une recette en JSON structuré avec sections.

FORMAT JSON À PRODUIRE (réponds UNIQUEMENT avec ce JSON, sans texte avant ou après):
{
  "title": "Nom de la recette",
  "servings": 4,
  "sections": [
    {
      "title": "Nom de la section",
      "ingredients": [
        {"quantity": 0.5, "unit": "kg", "designation": "foie gras cru"}
      ],
      "instructions": "Instructions de préparation pour cette section"
    }
  ],
  "general_instructions": "Instructions générales si présentes"
}

RÈGLES:
1. Détecte les SECTIONS de la recette et crée un objet par section avec ses ingrédients et instructions.
2. S'il n'y a pas de sections, crée UNE SEULE section appelée "Préparation".
3. Quantités numériques (1/2 = 0.5). Unités acceptées: g, kg, L, cl, ml, pièce, unité, cs, cc, pincée, QS.
4. Sans quantité (sel, poivre): quantity 0 et unit "QS". "Une pincée": quantity 1 et unit "pincée".
5. servings: cherche "pour X personnes" ou "X portions".
6. Garde les étapes de préparation textuelles pour chaque section."""


def extract_text(data: bytes, filename: str, content_type: Optional[str] = None) -> str:
    name = (filename or "").lower()
    content_type = (content_type or "").split(";")[0].strip().lower()
    logger.info("extracting text from %s (%s)", filename, content_type or "unknown type")

    if content_type == "text/plain" or name.endswith((".txt", ".md")):
        return data.decode("utf-8", errors="replace")

    if content_type in (DOCX_TYPE, DOC_TYPE) or name.endswith((".docx", ".doc")):
        try:
            result = mammoth.extract_raw_text(io.BytesIO(data))
        except (zipfile.BadZipFile, KeyError, ValueError) as exc:
            raise ValidationFailed(f"Could not read Word document: {exc}") from exc
        return result.value

    if content_type == PDF_TYPE or name.endswith(".pdf"):
        try:
            reader = PdfReader(io.BytesIO(data))
            pages = [page.extract_text() or "" for page in reader.pages]
        except PdfReadError as exc:
            raise ValidationFailed(f"Could not read PDF: {exc}") from exc
        return "\n".join(pages)

    raise UnsupportedDocument(f"Unsupported file format: {content_type or name}")


class RecipeParser:
    """Turns free recipe text into a :class:`ParsedRecipe` with the chat API."""

    def __init__(self, api_key: Optional[str], model: str = "gpt-4o-mini", client=None):
        self.api_key = api_key
        self.model = model
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "RecipeParser":
        return cls(settings.openai_api_key, settings.openai_model)

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            if not self.api_key:
                raise ConfigurationError("OPENAI_API_KEY not configured")
            self._client = OpenAI(api_key=self.api_key)
        return self._client

    def parse(self, text: str) -> ParsedRecipe:
        try:
            resp = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": f"Transforme cette recette en JSON:\n\n{text}"},
                ],
                temperature=0.3,
                response_format={"type": "json_object"},
            )
        except OpenAIError as exc:
            raise ExternalServiceError(f"OpenAI API error: {exc}") from exc

        content = resp.choices[0].message.content if resp.choices else None
        if not content:
            raise ExternalServiceError("No response from OpenAI")
        try:
            return ParsedRecipe.model_validate(json.loads(content))
        except (json.JSONDecodeError, ValidationError) as exc:
            raise ExternalServiceError(f"Unreadable response from OpenAI: {exc}") from exc


def parsed_to_form(parsed: ParsedRecipe, category: str = DEFAULT_CATEGORY) -> RecipeForm:
    sections = []
    rows = {}
    for part in parsed.sections:
        section = SectionForm(
            local_id=local_id(),
            title=(part.title or "").strip(),
            instructions=(part.instructions or "").strip(),
        )
        sections.append(section)
        rows[section.local_id] = [
            IngredientForm(
                local_id=local_id(),
                # "QS" rows carry no real quantity
                quantity=""
                if item.quantity is None or (item.quantity == 0 and item.unit == "QS")
                else item.quantity,
                unit=item.unit or "",
                designation=item.designation,
            )
            for item in part.ingredients
        ]
    return RecipeForm(
        title=parsed.title,
        servings=parsed.servings or DEFAULT_SERVINGS,
        category=category,
        notes=parsed.general_instructions or "",
        sections=sections,
        section_ingredients=rows,
    )


def import_document(
    store: RowStore,
    ctx: AuthContext,
    parser: RecipeParser,
    data: bytes,
    filename: str,
    content_type: Optional[str] = None,
    *,
    category: str = DEFAULT_CATEGORY,
) -> ImportResult:
    ctx.require_user()
    if not data:
        raise ValidationFailed("No file provided")

    text = extract_text(data, filename, content_type)
    if not text.strip():
        raise ValidationFailed(
            "No text could be extracted from the file. Check that it contains text."
        )
    logger.info("extracted %d characters from %s", len(text), filename)

    parsed = parser.parse(text)
    if not parsed.sections:
        raise ValidationFailed("No recipe sections could be detected")
    if not ctx.restaurant_id:
        raise ValidationFailed("User has no restaurant")
    if not parsed.title.strip():
        parsed.title = (filename or "Recette importée").rsplit(".", 1)[0]

    form = parsed_to_form(parsed, category)
    result = save_recipe(store, ctx, form, default_category=category)
    logger.info("imported %s as recipe %s", filename, result.recipe_id)
    return ImportResult(
        recipe_id=result.recipe_id,
        title=form.title,
        sections_count=len(form.sections),
    )


def import_drive_file(
    store: RowStore,
    ctx: AuthContext,
    parser: RecipeParser,
    drive: DriveClient,
    file_id: str,
    access_token: str,
    *,
    max_bytes: int,
    category: str = DEFAULT_CATEGORY,
) -> ImportResult:
    ctx.require_user()
    drive_file = drive.download(file_id, access_token)
    if len(drive_file.data) > max_bytes:
        raise PayloadTooLarge("File is too large")
    return import_document(
        store,
        ctx,
        parser,
        drive_file.data,
        drive_file.name,
        drive_file.mime_type,
        category=category,
    )
