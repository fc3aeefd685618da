"""Tests for the Cloudinary storage backend and WebP conversion."""
import io

import pytest
from PIL import Image

from village_portal.config import settings
from village_portal.services import cloudinary_service
from village_portal.services.gallery_upload import (
    CloudinaryFilePersister,
    FileStorageError,
    LocalFilePersister,
    StorageUnavailableError,
    SubmittedFile,
    UploadCandidate,
    get_persister,
)
from village_portal.utils.image_converter import convert_to_webp


def png_bytes(size=(64, 48), mode="RGB") -> bytes:
    buffer = io.BytesIO()
    Image.new(mode, size, color=0).save(buffer, format="PNG")
    return buffer.getvalue()


def candidate(name="temple.png", content=b"data") -> UploadCandidate:
    return UploadCandidate(file=SubmittedFile(filename=name, size=len(content), content=content), extension=".png")


class TestConvertToWebp:

    def test_png_is_converted(self):
        data, is_webp = convert_to_webp(png_bytes())

        assert is_webp is True
        assert Image.open(io.BytesIO(data)).format == "WEBP"

    def test_large_image_is_downscaled(self):
        data, _ = convert_to_webp(png_bytes(size=(400, 100)), max_dimension=200)

        assert Image.open(io.BytesIO(data)).size == (200, 50)

    def test_unreadable_bytes_returned_unchanged(self):
        assert convert_to_webp(b"not an image") == (b"not an image", False)


class TestPublicIdFromUrl:

    def test_versioned_url_with_folder(self):
        url = "https://res.cloudinary.com/demo/image/upload/v1712345678/gallery/abc123.webp"
        assert cloudinary_service.public_id_from_url(url) == "gallery/abc123"

    def test_url_without_version_or_folder(self):
        url = "https://res.cloudinary.com/demo/image/upload/abc123.jpg"
        assert cloudinary_service.public_id_from_url(url) == "abc123"

    def test_local_path_rejected(self):
        with pytest.raises(ValueError):
            cloudinary_service.public_id_from_url("/uploads/gallery/abc.png")


class TestCloudinaryFilePersister:

    @pytest.mark.asyncio
    async def test_missing_credentials_make_storage_unavailable(self, monkeypatch):
        monkeypatch.setattr(settings, "CLOUDINARY_API_SECRET", "")

        with pytest.raises(StorageUnavailableError):
            await CloudinaryFilePersister("gallery").ensure_writable()

    @pytest.mark.asyncio
    async def test_persist_records_delivery_url(self, monkeypatch):
        calls = []

        async def fake_store(content, public_id, folder):
            calls.append((content, public_id, folder))
            return {"url": f"https://cdn.example/{folder}/{public_id}.png", "public_id": f"{folder}/{public_id}", "bytes": len(content)}

        monkeypatch.setattr(cloudinary_service, "store_gallery_image", fake_store)

        persisted = await CloudinaryFilePersister("gallery", convert_to_webp=False).persist(candidate())

        assert calls[0][0] == b"data"
        assert calls[0][2] == "gallery"
        assert persisted.public_path == f"https://cdn.example/gallery/{calls[0][1]}.png"

    @pytest.mark.asyncio
    async def test_empty_remote_file_is_removed_and_reported(self, monkeypatch):
        removed = []

        async def fake_store(content, public_id, folder):
            return {"url": "https://cdn.example/x.png", "public_id": "gallery/x", "bytes": 0}

        async def fake_remove(public_id):
            removed.append(public_id)
            return True

        monkeypatch.setattr(cloudinary_service, "store_gallery_image", fake_store)
        monkeypatch.setattr(cloudinary_service, "remove_gallery_image", fake_remove)

        with pytest.raises(FileStorageError, match="empty"):
            await CloudinaryFilePersister("gallery", convert_to_webp=False).persist(candidate())
        assert removed == ["gallery/x"]

    @pytest.mark.asyncio
    async def test_upload_failure_becomes_file_storage_error(self, monkeypatch):
        async def fake_store(content, public_id, folder):
            raise RuntimeError("network down")

        monkeypatch.setattr(cloudinary_service, "store_gallery_image", fake_store)

        with pytest.raises(FileStorageError, match="network down"):
            await CloudinaryFilePersister("gallery", convert_to_webp=False).persist(candidate())


class TestGetPersister:

    def test_local_backend(self, monkeypatch):
        monkeypatch.setattr(settings, "STORAGE_BACKEND", "local")
        persister = get_persister()
        assert isinstance(persister, LocalFilePersister)
        assert persister.url_prefix == "/uploads/gallery"

    def test_unknown_backend(self, monkeypatch):
        monkeypatch.setattr(settings, "STORAGE_BACKEND", "ftp")
        with pytest.raises(ValueError):
            get_persister()
