"""
Bulk gallery upload workflow.

Validates each submitted file, writes the survivors to storage under random
names, builds GalleryImage records for them and commits the batch in one
transaction. Per-file problems are collected and reported alongside the
successful uploads; only an empty batch, an unwritable upload directory or a
failed commit abort the request.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import List, Optional, Sequence, Tuple
import asyncio
import logging
import uuid

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from village_portal.config import settings
from village_portal.models import GalleryImage
from village_portal.services import cloudinary_service
from village_portal.utils.image_converter import convert_to_webp

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".webp"}
DEFAULT_CATEGORY = "General"
UNTITLED = "Untitled"
MAX_TITLE_LENGTH = 90
SUMMARY_ERROR_LIMIT = 5

INVALID_FILENAME_CHARS = frozenset('"<>|:*?\\/') | frozenset(chr(i) for i in range(32))


class UploadError(Exception):
    """Base class for errors that abort a whole upload request."""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        self.message = message
        self.errors = errors or []
        super().__init__(message)


class UploadValidationError(UploadError):
    """No files, blank category, or no file passed validation."""


class StorageUnavailableError(UploadError):
    """The upload destination failed its write probe."""


class BatchCommitError(UploadError):
    """Nothing to commit, or the database rejected the batch."""


class FileStorageError(Exception):
    """A single file could not be stored; the batch continues without it."""


@dataclass
class SubmittedFile:
    filename: str
    size: int
    content: bytes


@dataclass
class UploadCandidate:
    file: SubmittedFile
    extension: str


@dataclass
class PersistedFile:
    candidate: UploadCandidate
    stored_name: str
    public_path: str


@dataclass
class UploadResult:
    images: List[GalleryImage]
    errors: List[str] = field(default_factory=list)
    message: str = ""


def _base_name(filename: str) -> str:
    # Some browsers send the client-side path along with the name
    return (filename or "").replace("\\", "/").rsplit("/", 1)[-1]


def split_extension(filename: str) -> Tuple[str, str]:
    """
    Split a file name into (stem, extension) with the extension including its dot.

    ".png" yields ("", ".png"); a name without a dot yields (name, "").
    """
    name = _base_name(filename)
    stem, dot, ext = name.rpartition(".")
    if not dot:
        return name, ""
    return stem, f".{ext}"


def validate_batch(
    files: Sequence[SubmittedFile],
    category: Optional[str],
    max_file_size: Optional[int] = None,
) -> Tuple[List[UploadCandidate], List[str]]:
    """
    Check every submitted file independently.

    Args:
        files: Files in submission order
        category: Category entered for the whole batch
        max_file_size: Per-file byte limit (defaults to MAX_UPLOAD_FILE_BYTES)

    Returns:
        (accepted candidates, per-file error messages)

    Raises:
        UploadValidationError: no files, blank category, or no file accepted
    """
    if not files:
        raise UploadValidationError("Please select at least one image file.")

    if not category or not category.strip():
        raise UploadValidationError("Category is required.")

    limit = max_file_size or settings.MAX_UPLOAD_FILE_BYTES
    limit_label = f"{limit // (1024 * 1024)}MB"
    candidates = []
    errors = []

    for file in files:
        name = file.filename
        extension = split_extension(name)[1].lower()
        logger.info(f"Validating file: {name}, Size: {file.size} bytes")

        if extension not in ALLOWED_EXTENSIONS:
            logger.warning(f"Invalid file extension: {extension or '(none)'} for file: {name}")
            errors.append(f"File '{name}' is not a supported image format.")
            continue

        if file.size > limit:
            logger.warning(f"File too large: {name} - {file.size} bytes")
            errors.append(f"File '{name}' exceeds the {limit_label} size limit.")
            continue

        if file.size == 0 or not file.content:
            logger.warning(f"Empty file: {name}")
            errors.append(f"File '{name}' is empty.")
            continue

        candidates.append(UploadCandidate(file=file, extension=extension))

    if not candidates:
        logger.warning("No files passed validation")
        raise UploadValidationError(
            "No valid image files were selected. Please check file formats and sizes.",
            errors,
        )

    return candidates, errors


def generate_stored_name(extension: str) -> str:
    return f"{uuid.uuid4().hex}{extension}"


class LocalFilePersister:
    """
    Stores gallery files under the static content root, served at url_prefix.
    """

    def __init__(self, upload_dir: Path, url_prefix: str):
        self.upload_dir = Path(upload_dir)
        self.url_prefix = url_prefix.rstrip("/")

    @classmethod
    def from_settings(cls) -> "LocalFilePersister":
        subdir = settings.UPLOAD_SUBDIR.strip("/")
        return cls(Path(settings.STATIC_ROOT) / subdir, f"/{subdir}")

    def _probe(self) -> None:
        self.upload_dir.mkdir(parents=True, exist_ok=True)
        probe = self.upload_dir / f"test_{uuid.uuid4().hex}.txt"
        probe.write_text("test")
        probe.unlink()

    async def ensure_writable(self) -> None:
        """
        Create the upload directory if needed and prove it accepts writes and deletes.

        Raises:
            StorageUnavailableError: if the probe fails
        """
        try:
            await asyncio.to_thread(self._probe)
            logger.info(f"Directory permissions test passed: {self.upload_dir}")
        except OSError as e:
            logger.error(f"Directory permission test failed for {self.upload_dir}: {str(e)}", exc_info=True)
            raise StorageUnavailableError("Upload directory is not accessible. Please check permissions.")

    @staticmethod
    def _write(path: Path, content: bytes) -> int:
        # "x" refuses to clobber an existing file
        with open(path, "xb") as fh:
            fh.write(content)
        if not path.exists():
            raise FileStorageError("File was not created on disk")
        size = path.stat().st_size
        if size == 0:
            raise FileStorageError("File was created but is empty")
        return size

    async def persist(self, candidate: UploadCandidate) -> PersistedFile:
        """
        Write one accepted file; removes any partial file on failure.

        Raises:
            FileStorageError: for any error during or after the write
        """
        stored_name = generate_stored_name(candidate.extension)
        path = self.upload_dir / stored_name
        try:
            size = await asyncio.to_thread(self._write, path, candidate.file.content)
            logger.info(f"File saved successfully: {path}, Size: {size} bytes")
        except FileExistsError as e:
            # Name collision: the file on disk belongs to another upload
            logger.error(f"Stored name already in use for {candidate.file.filename}: {path}")
            raise FileStorageError(f"Stored file name {stored_name} is already in use") from e
        except Exception as e:
            logger.error(f"Error saving file {candidate.file.filename}: {str(e)}")
            await asyncio.to_thread(self._remove, path)
            if isinstance(e, FileStorageError):
                raise
            raise FileStorageError(str(e)) from e

        return PersistedFile(
            candidate=candidate,
            stored_name=stored_name,
            public_path=f"{self.url_prefix}/{stored_name}",
        )

    @staticmethod
    def _remove(path: Path) -> bool:
        try:
            if path.exists():
                path.unlink()
                logger.info(f"Cleaned up file: {path}")
                return True
        except OSError as e:
            logger.error(f"Failed to clean up file {path}: {str(e)}")
        return False

    async def discard(self, image_path: str) -> bool:
        """Delete the stored file behind a public path. Returns True if a file was removed."""
        if not image_path.startswith(f"{self.url_prefix}/"):
            logger.warning(f"Not a local gallery path, nothing to delete: {image_path}")
            return False
        name = PurePosixPath(image_path).name
        return await asyncio.to_thread(self._remove, self.upload_dir / name)


class CloudinaryFilePersister:
    """
    Stores gallery files in Cloudinary; the record path is the secure delivery URL.
    """

    def __init__(self, folder: str, convert_to_webp: bool = True):
        self.folder = folder
        self.convert_to_webp = convert_to_webp

    @classmethod
    def from_settings(cls) -> "CloudinaryFilePersister":
        return cls(settings.CLOUDINARY_FOLDER, settings.CONVERT_UPLOADS_TO_WEBP)

    async def ensure_writable(self) -> None:
        if cloudinary_service.missing_credentials():
            raise StorageUnavailableError("Image storage is not configured. Please check Cloudinary credentials.")

    async def persist(self, candidate: UploadCandidate) -> PersistedFile:
        content = candidate.file.content
        if self.convert_to_webp:
            converted, is_webp = await asyncio.to_thread(convert_to_webp, content)
            if is_webp and len(converted) < len(content):
                content = converted

        public_id = uuid.uuid4().hex
        try:
            result = await cloudinary_service.store_gallery_image(content, public_id, self.folder)
        except Exception as e:
            logger.error(f"Error uploading {candidate.file.filename} to Cloudinary: {str(e)}")
            raise FileStorageError(str(e)) from e

        if not result.get("bytes"):
            logger.error(f"Cloudinary stored an empty file for {candidate.file.filename}")
            try:
                await cloudinary_service.remove_gallery_image(result["public_id"])
            except Exception as e:
                logger.error(f"Failed to clean up empty Cloudinary asset {result['public_id']}: {str(e)}")
            raise FileStorageError("File was created but is empty")

        return PersistedFile(
            candidate=candidate,
            stored_name=result["public_id"],
            public_path=result["url"],
        )

    async def discard(self, image_path: str) -> bool:
        try:
            public_id = cloudinary_service.public_id_from_url(image_path)
        except ValueError as e:
            logger.warning(f"Failed to extract public_id from URL: {str(e)}")
            return False
        return await cloudinary_service.remove_gallery_image(public_id)


def get_persister():
    """Build the persister selected by STORAGE_BACKEND."""
    backend = settings.STORAGE_BACKEND.strip().lower()
    if backend == "local":
        return LocalFilePersister.from_settings()
    if backend == "cloudinary":
        return CloudinaryFilePersister.from_settings()
    raise ValueError(f"Unknown STORAGE_BACKEND: {settings.STORAGE_BACKEND}")


def sanitize_title(filename: str) -> str:
    """
    Derive a display title from an uploaded file name.

    The extension is dropped, characters that are invalid in file names are
    replaced with '_', and the result is cut to 90 characters.
    """
    stem = split_extension(filename)[0]
    if not stem:
        return UNTITLED
    sanitized = "".join("_" if ch in INVALID_FILENAME_CHARS else ch for ch in stem)
    return sanitized[:MAX_TITLE_LENGTH]


def build_record(persisted: PersistedFile, category: Optional[str], now: Optional[datetime] = None) -> GalleryImage:
    category = (category or "").strip() or DEFAULT_CATEGORY
    return GalleryImage(
        title=sanitize_title(persisted.candidate.file.filename),
        description="",
        category=category,
        image_path=persisted.public_path,
        upload_date=now or datetime.now(timezone.utc),
    )


async def commit_batch(db: AsyncSession, records: List[GalleryImage]) -> None:
    """
    Insert every record in a single transaction.

    Raises:
        BatchCommitError: if there is nothing to commit or the database rejects the batch
    """
    if not records:
        logger.warning("No images were successfully processed")
        raise BatchCommitError("No images were successfully uploaded. Please try again.")

    logger.info(f"Saving {len(records)} images to database...")
    try:
        db.add_all(records)
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        real_error = str(getattr(e, "orig", None) or e)
        logger.error(f"Database error while saving images: {real_error}", exc_info=True)
        raise BatchCommitError(real_error)

    logger.info(f"Successfully saved {len(records)} images to database")


def summarize(uploaded_count: int, errors: List[str]) -> str:
    message = f"Successfully uploaded {uploaded_count} image(s) to the gallery!"
    if errors:
        message += f"\n\nHowever, {len(errors)} file(s) failed:\n• " + "\n• ".join(errors[:SUMMARY_ERROR_LIMIT])
        if len(errors) > SUMMARY_ERROR_LIMIT:
            message += f"\n• ... and {len(errors) - SUMMARY_ERROR_LIMIT} more"
    return message


async def process_upload(
    db: AsyncSession,
    files: Sequence[SubmittedFile],
    category: Optional[str],
    persister=None,
) -> UploadResult:
    """
    Run the full upload workflow for one request.

    Args:
        db: Database session; committed once at the end
        files: Submitted files in submission order
        category: Category for every image in the batch
        persister: Storage backend (defaults to get_persister())

    Returns:
        UploadResult with the committed records, every per-file error and a summary message

    Raises:
        UploadValidationError, StorageUnavailableError, BatchCommitError
    """
    logger.info(f"Starting gallery upload: {len(files)} file(s), category={category!r}")

    candidates, errors = validate_batch(files, category)

    persister = persister or get_persister()
    await persister.ensure_writable()

    persisted_files = []
    for candidate in candidates:
        try:
            persisted_files.append(await persister.persist(candidate))
        except FileStorageError as e:
            errors.append(f"'{candidate.file.filename}': {str(e)}")

    now = datetime.now(timezone.utc)
    records = [build_record(p, category, now) for p in persisted_files]

    try:
        await commit_batch(db, records)
    except BatchCommitError as e:
        for persisted in persisted_files:
            try:
                await persister.discard(persisted.public_path)
            except Exception as cleanup_error:
                logger.error(f"Failed to remove {persisted.public_path} after commit failure: {str(cleanup_error)}")
        e.errors = errors
        raise

    if errors:
        logger.warning(f"Partial upload success: {len(records)} succeeded, {len(errors)} failed")
    logger.info(f"Upload completed: {len(records)} image(s) saved")

    return UploadResult(images=records, errors=errors, message=summarize(len(records), errors))
