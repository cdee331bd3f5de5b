"""Google Drive document source: list a folder and fetch file contents for ingestion."""

import logging
from dataclasses import dataclass

from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from semantic_rag.config import GDriveConfig
from semantic_rag.document_loader import DOCX, GOOGLE_DOC, MARKDOWN, PDF, TEXT
from semantic_rag.errors import InvalidInputError, ProviderError
from semantic_rag.events import EventSink
from semantic_rag.ingestion import Ingestor
from semantic_rag.models import IngestResult

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/drive.readonly"]
SUPPORTED_MIME_TYPES = (PDF, DOCX, TEXT, MARKDOWN, GOOGLE_DOC)


@dataclass(frozen=True)
class DriveFile:
    id: str
    name: str
    mime_type: str
    size: int = 0

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "mime_type": self.mime_type, "size": self.size}


class DriveSource:
    """Read-only view of Drive folders through the Drive v3 API.

    Credentials are supplied by the caller; a prebuilt ``service`` may be
    passed instead, which is how tests inject a mock.
    """

    def __init__(
        self,
        credentials=None,
        service=None,
        config: GDriveConfig | None = None,
    ) -> None:
        if credentials is None and service is None:
            raise ValueError("DriveSource needs credentials or a service")
        self.config = config or GDriveConfig()
        self._credentials = credentials
        self._service = service

    @property
    def service(self):
        if self._service is None:
            self._service = build(
                "drive", "v3", credentials=self._credentials, cache_discovery=False
            )
        return self._service

    def list_files(self, folder_id: str | None = None) -> list[DriveFile]:
        """List the supported files directly inside a folder, following every page.

        Args:
            folder_id: Drive folder ID. Falls back to ``GDriveConfig.folder_id``.

        Raises:
            InvalidInputError: If no folder ID is available.
            ProviderError: If the Drive API call fails.
        """
        target = folder_id or self.config.folder_id
        if not target:
            raise InvalidInputError("No folder ID provided and none is configured")

        query = "'{}' in parents and trashed = false".format(target.replace("'", "\\'"))
        files: list[DriveFile] = []
        page_token = None
        while True:
            try:
                response = (
                    self.service.files()
                    .list(
                        q=query,
                        fields="nextPageToken, files(id, name, mimeType, size)",
                        pageSize=self.config.page_size,
                        pageToken=page_token,
                    )
                    .execute()
                )
            except HttpError as exc:
                raise ProviderError(f"Drive listing failed: {exc}") from exc

            for item in response.get("files", []):
                if item.get("mimeType") not in SUPPORTED_MIME_TYPES:
                    continue
                files.append(
                    DriveFile(
                        id=item["id"],
                        name=item["name"],
                        mime_type=item["mimeType"],
                        size=int(item.get("size") or 0),
                    )
                )

            page_token = response.get("nextPageToken")
            if not page_token:
                break

        logger.info("Found %d supported files in Drive folder %s", len(files), target)
        return files

    def download(self, file_id: str, mime_type: str) -> bytes:
        """Fetch a file's bytes; Google Docs are exported as plain text.

        Raises:
            ProviderError: If the Drive API call fails.
        """
        files = self.service.files()
        try:
            if mime_type == GOOGLE_DOC:
                return files.export(fileId=file_id, mimeType=TEXT).execute()
            return files.get_media(fileId=file_id).execute()
        except HttpError as exc:
            raise ProviderError(f"Drive download failed for {file_id}: {exc}") from exc


def open_drive(config: GDriveConfig) -> DriveSource | None:
    """Build a source from the configured service-account key, if any."""
    if not config.credentials_file:
        return None

    credentials = service_account.Credentials.from_service_account_file(
        config.credentials_file, scopes=SCOPES
    )
    return DriveSource(credentials=credentials, config=config)


def sync_folder(
    source: DriveSource,
    ingestor: Ingestor,
    events: EventSink,
    folder_id: str | None = None,
) -> list[IngestResult]:
    """Download and ingest every supported file in a Drive folder.

    A file that fails to download is recorded with status ``error``; the
    rest of the folder is still processed.
    """
    files = source.list_files(folder_id)
    events.publish("info", "gdrive", f"Found {len(files)} files to process")

    results: list[IngestResult] = []
    for drive_file in files:
        try:
            data = source.download(drive_file.id, drive_file.mime_type)
        except ProviderError as exc:
            logger.warning("Download failed for %s: %s", drive_file.name, exc)
            events.publish(
                "error",
                "gdrive",
                f"Failed to download {drive_file.name}",
                {"error": str(exc), "file_id": drive_file.id},
            )
            results.append(
                IngestResult(filename=drive_file.name, status="error", reason=str(exc))
            )
            continue
        results.extend(ingestor.ingest_files([(data, drive_file.name, drive_file.mime_type)]))

    succeeded = sum(1 for r in results if r.status == "success")
    failed = sum(1 for r in results if r.status == "error")
    events.publish(
        "success" if not failed else "warning",
        "gdrive",
        f"Sync complete: {succeeded} success, {failed} errors",
    )
    return results
