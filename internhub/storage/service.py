"""Firebase Storage for generated certificate documents.

Documents live at ``internhub/<folder>/<name>``; re-uploading a name replaces
the stored document, so a retried render never leaves duplicates behind.
"""

import asyncio
from pathlib import Path
from typing import TYPE_CHECKING
from urllib.parse import quote

import structlog


if TYPE_CHECKING:
    from google.cloud.storage import Bucket

    from internhub.config.settings import Settings


logger = structlog.get_logger(__name__)

PATH_PREFIX = "internhub"
CACHE_CONTROL = "public, max-age=86400"


class StorageError(Exception):
    """Base error for storage operations."""

    def __init__(self, message: str, code: str = "storage_error") -> None:
        self.message = message
        self.code = code
        super().__init__(message)


class StorageNotConfiguredError(StorageError):
    def __init__(self, message: str = "Firebase Storage is not configured") -> None:
        super().__init__(message, "storage_not_configured")


class StorageUploadError(StorageError):
    def __init__(self, message: str) -> None:
        super().__init__(message, "upload_error")


def open_bucket(settings: "Settings") -> "Bucket":
    """Initialize the Firebase app (once per process) and return its bucket.

    Raises:
        StorageNotConfiguredError: Missing settings or credentials file, or
            the SDK refused the credentials.
    """
    # Lazy import so the SDK only loads when documents are enabled
    import firebase_admin  # noqa: PLC0415
    from firebase_admin import credentials, storage  # noqa: PLC0415

    creds_path = settings.firebase_credentials_path
    if not creds_path or not Path(creds_path).exists():
        raise StorageNotConfiguredError(f"Firebase credentials file not found: {creds_path}")

    try:
        app = firebase_admin.get_app()
    except ValueError:
        try:
            app = firebase_admin.initialize_app(
                credentials.Certificate(creds_path),
                {
                    "storageBucket": settings.firebase_storage_bucket,
                    "projectId": settings.firebase_project_id,
                },
            )
        except Exception as e:
            logger.exception("firebase_init_failed")
            raise StorageNotConfiguredError(f"Failed to initialize Firebase: {e}") from e
        logger.info(
            "firebase_initialized",
            project_id=settings.firebase_project_id,
            bucket=settings.firebase_storage_bucket,
        )
    return storage.bucket(app=app)


class FirebaseStorageService:
    """Uploads rendered documents and hands back their public URLs."""

    def __init__(self, settings: "Settings") -> None:
        self.settings = settings
        self._bucket: Bucket | None = None

    @property
    def is_configured(self) -> bool:
        return self.settings.firebase_configured

    def build_document_path(self, folder: str, name: str) -> str:
        return f"{PATH_PREFIX}/{folder}/{name}"

    def generate_public_url(self, storage_path: str) -> str:
        encoded = "/".join(quote(part, safe="") for part in storage_path.split("/"))
        return f"https://storage.googleapis.com/{self.settings.firebase_storage_bucket}/{encoded}"

    def _put(self, storage_path: str, content: bytes, content_type: str) -> None:
        if self._bucket is None:
            self._bucket = open_bucket(self.settings)
        blob = self._bucket.blob(storage_path)
        blob.cache_control = CACHE_CONTROL
        blob.upload_from_string(content, content_type=content_type)
        blob.make_public()

    async def upload_document(
        self,
        content: bytes,
        content_type: str,
        folder: str,
        name: str,
    ) -> str:
        """Store a document and return its public URL.

        Raises:
            StorageNotConfiguredError: Firebase is disabled or misconfigured
            StorageUploadError: The upload itself failed
        """
        if not self.is_configured:
            raise StorageNotConfiguredError

        storage_path = self.build_document_path(folder, name)
        try:
            await asyncio.to_thread(self._put, storage_path, content, content_type)
        except StorageNotConfiguredError:
            raise
        except Exception as e:
            logger.exception("document_upload_failed", storage_path=storage_path)
            raise StorageUploadError(f"Failed to upload document: {e}") from e

        logger.info("document_uploaded", storage_path=storage_path, size=len(content))
        return self.generate_public_url(storage_path)
