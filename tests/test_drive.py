# flake8: noqa
import httpx
import pytest

from kitchn import app as app_module
from kitchn.drive import DOCX_TYPE, DriveClient, export_name
from kitchn.errors import (
    ExternalServiceError,
    NotFound,
    PayloadTooLarge,
    UnsupportedDocument,
    ValidationFailed,
)
from kitchn.importer import import_drive_file
from kitchn.schemas import ParsedRecipe


class FakeDrive:
    """Serves Drive v3 metadata and content from a dict of files."""

    def __init__(self, files):
        self.files = files
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        parts = request.url.path.split("/")  # /drive/v3/files/<id>[/export]
        file_id = parts[4]
        if file_id not in self.files:
            return httpx.Response(404, json={"error": {"message": "File not found"}})
        meta, content = self.files[file_id]
        if request.url.params.get("fields"):
            return httpx.Response(200, json=dict(meta, id=file_id))
        return httpx.Response(200, content=content)

    def client(self):
        return DriveClient(transport=httpx.MockTransport(self))


class StaticParser:
    def __init__(self):
        self.texts = []

    def parse(self, text):
        self.texts.append(text)
        return ParsedRecipe.model_validate(
            {
                "title": "Gaspacho",
                "servings": 4,
                "sections": [
                    {
                        "title": "Soupe",
                        "ingredients": [{"quantity": 1, "unit": "kg", "designation": "tomates"}],
                        "instructions": "Mixer.",
                    }
                ],
            }
        )


FILES = {
    "doc1": ({"name": "Gaspacho.gdoc", "mimeType": "application/vnd.google-apps.document"}, b"docx"),
    "txt1": ({"name": "gaspacho.txt", "mimeType": "text/plain"}, "Gaspacho andalou".encode("utf-8")),
    "sheet1": ({"name": "Stocks", "mimeType": "application/vnd.google-apps.spreadsheet"}, b""),
}


def test_export_name():
    assert export_name("Gaspacho.gdoc", ".docx") == "Gaspacho.docx"
    assert export_name("Gaspacho", ".docx") == "Gaspacho.docx"


def test_google_doc_is_exported_as_docx():
    drive = FakeDrive(FILES)
    result = drive.client().download("doc1", "ya29.token")
    assert result.name == "Gaspacho.docx"
    assert result.mime_type == DOCX_TYPE
    assert result.data == b"docx"

    meta, export = drive.requests
    assert meta.url.params["fields"] == "name,mimeType,id"
    assert export.url.path == "/drive/v3/files/doc1/export"
    assert export.url.params["mimeType"] == DOCX_TYPE
    assert all(r.headers["Authorization"] == "Bearer ya29.token" for r in drive.requests)


def test_regular_file_is_downloaded_as_is():
    drive = FakeDrive(FILES)
    result = drive.client().download("txt1", "ya29.token")
    assert (result.name, result.mime_type) == ("gaspacho.txt", "text/plain")
    assert drive.requests[1].url.params["alt"] == "media"


def test_download_errors():
    client = FakeDrive(FILES).client()
    with pytest.raises(UnsupportedDocument):
        client.download("sheet1", "ya29.token")
    with pytest.raises(NotFound):
        client.download("missing", "ya29.token")
    with pytest.raises(ValidationFailed):
        client.download("doc1", " ")

    down = DriveClient(transport=httpx.MockTransport(lambda request: httpx.Response(503)))
    with pytest.raises(ExternalServiceError):
        down.download("doc1", "ya29.token")


def test_drive_file_over_the_size_limit(ctx):
    drive = FakeDrive(FILES).client()
    with pytest.raises(PayloadTooLarge):
        import_drive_file(None, ctx, StaticParser(), drive, "txt1", "ya29.token", max_bytes=4)


def test_import_from_drive(client, make_user):
    chef = make_user()
    drive = FakeDrive(FILES)
    parser = StaticParser()
    app_module.app.dependency_overrides[app_module.get_drive] = drive.client
    app_module.app.dependency_overrides[app_module.get_parser] = lambda: parser
    try:
        res = client.post(
            "/api/import/drive",
            json={"file_id": "txt1", "access_token": "ya29.token"},
            headers=chef.headers,
        )
        missing = client.post(
            "/api/import/drive", json={"file_id": "txt1"}, headers=chef.headers
        )
    finally:
        del app_module.app.dependency_overrides[app_module.get_drive]
        del app_module.app.dependency_overrides[app_module.get_parser]

    assert res.status_code == 200, res.text
    assert res.json()["title"] == "Gaspacho"
    assert parser.texts == ["Gaspacho andalou"]
    detail = client.get(f"/api/recipes/{res.json()['recipe_id']}", headers=chef.headers).json()
    assert detail["sections"][0]["ingredients"][0]["designation"] == "tomates"

    assert missing.status_code == 400
