"""Download recipe documents from Google Drive with the caller's access token."""
import logging
import re
from dataclasses import dataclass
from typing import Optional

import httpx

from .config import Settings
from .errors import ExternalServiceError, NotFound, UnsupportedDocument, ValidationFailed

logger = logging.getLogger(__name__)

BASE_URL = "https://www.googleapis.com/drive/v3/"
WORKSPACE_PREFIX = "application/vnd.google-apps."
DOCX_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

# Google Workspace types that can be exported to something importable
EXPORT_FORMATS = {
    "application/vnd.google-apps.document": (DOCX_TYPE, ".docx"),
}


@dataclass
class DriveFile:
    name: str
    mime_type: str
    data: bytes


def export_name(name: str, extension: str) -> str:
    return re.sub(r"\.[^.]*$", "", name) + extension


class DriveClient:
    def __init__(
        self,
        base_url: str = BASE_URL,
        timeout: float = 60.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.client = httpx.Client(base_url=base_url, timeout=timeout, transport=transport)

    @classmethod
    def from_settings(cls, settings: Settings) -> "DriveClient":
        return cls(settings.drive_api_url, settings.drive_timeout)

    def close(self) -> None:
        self.client.close()

    def _get(self, path: str, access_token: str, params: dict, what: str) -> httpx.Response:
        try:
            resp = self.client.get(
                path,
                params=params,
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except httpx.HTTPError as exc:
            raise ExternalServiceError(f"Google Drive unreachable: {exc}") from exc
        if resp.status_code == 404:
            raise NotFound("Google Drive file not found")
        if not resp.is_success:
            logger.warning("drive %s failed (%s): %s", what, resp.status_code, resp.text)
            raise ExternalServiceError(f"Failed to {what}: {resp.reason_phrase}")
        return resp

    def download(self, file_id: str, access_token: str) -> DriveFile:
        """Fetch a file; Google Docs are exported as .docx on the way."""
        file_id = (file_id or "").strip()
        access_token = (access_token or "").strip()
        if not file_id or not access_token:
            raise ValidationFailed("file_id and access_token are required")

        meta = self._get(
            f"files/{file_id}", access_token, {"fields": "name,mimeType,id"}, "get file metadata"
        ).json()
        name = meta.get("name") or "document"
        mime_type = meta.get("mimeType") or "application/octet-stream"

        if mime_type.startswith(WORKSPACE_PREFIX):
            if mime_type not in EXPORT_FORMATS:
                raise UnsupportedDocument(f"Unsupported Google Workspace file type: {mime_type}")
            mime_type, extension = EXPORT_FORMATS[mime_type]
            name = export_name(name, extension)
            resp = self._get(
                f"files/{file_id}/export", access_token, {"mimeType": mime_type}, "export file"
            )
        else:
            resp = self._get(
                f"files/{file_id}", access_token, {"alt": "media"}, "download file"
            )

        logger.info("downloaded drive file %s as %s (%d bytes)", file_id, name, len(resp.content))
        return DriveFile(name=name, mime_type=mime_type, data=resp.content)
