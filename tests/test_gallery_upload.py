"""Tests for the bulk gallery upload workflow."""
from datetime import datetime, timezone

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from village_portal.models import GalleryImage
from village_portal.services import gallery_upload
from village_portal.services.gallery_upload import (
    BatchCommitError,
    FileStorageError,
    LocalFilePersister,
    PersistedFile,
    StorageUnavailableError,
    SubmittedFile,
    UploadCandidate,
    UploadValidationError,
    build_record,
    commit_batch,
    process_upload,
    sanitize_title,
    split_extension,
    summarize,
    validate_batch,
)

MB = 1024 * 1024


def make_file(name: str, size: int = 1024) -> SubmittedFile:
    return SubmittedFile(filename=name, size=size, content=b"x" * size)


async def count_images(db) -> int:
    result = await db.execute(select(func.count()).select_from(GalleryImage))
    return result.scalar()


class TestValidateBatch:
    """Tests for per-file and whole-batch validation."""

    def test_rejects_empty_batch(self):
        with pytest.raises(UploadValidationError) as exc_info:
            validate_batch([], "Temple")
        assert exc_info.value.message == "Please select at least one image file."

    @pytest.mark.parametrize("category", ["", "   ", None])
    def test_rejects_blank_category(self, category):
        with pytest.raises(UploadValidationError) as exc_info:
            validate_batch([make_file("a.png")], category)
        assert exc_info.value.message == "Category is required."

    def test_accepts_supported_extensions_case_insensitively(self):
        files = [make_file(n) for n in ["a.JPG", "b.jpeg", "c.Png", "d.gif", "e.WEBP"]]
        candidates, errors = validate_batch(files, "Temple")

        assert errors == []
        assert [c.extension for c in candidates] == [".jpg", ".jpeg", ".png", ".gif", ".webp"]

    def test_unsupported_extension_yields_one_error(self):
        candidates, errors = validate_batch([make_file("doc.pdf"), make_file("ok.png")], "Temple")

        assert [c.file.filename for c in candidates] == ["ok.png"]
        assert errors == ["File 'doc.pdf' is not a supported image format."]

    def test_file_without_extension_is_rejected(self):
        _, errors = validate_batch([make_file("README"), make_file("ok.png")], "Temple")
        assert errors == ["File 'README' is not a supported image format."]

    def test_oversize_file_yields_one_error(self):
        big = SubmittedFile(filename="big.jpg", size=5 * MB + 1, content=b"x")
        _, errors = validate_batch([big, make_file("ok.png")], "Temple")
        assert errors == ["File 'big.jpg' exceeds the 5MB size limit."]

    def test_exactly_five_megabytes_is_accepted(self):
        edge = SubmittedFile(filename="edge.jpg", size=5 * MB, content=b"x")
        candidates, errors = validate_batch([edge], "Temple")
        assert len(candidates) == 1
        assert errors == []

    def test_empty_file_yields_one_error(self):
        empty = SubmittedFile(filename="empty.png", size=0, content=b"")
        _, errors = validate_batch([empty, make_file("ok.png")], "Temple")
        assert errors == ["File 'empty.png' is empty."]

    def test_no_valid_files_raises_with_every_message(self):
        files = [make_file("a.txt"), SubmittedFile(filename="b.png", size=0, content=b"")]
        with pytest.raises(UploadValidationError) as exc_info:
            validate_batch(files, "Temple")

        assert exc_info.value.message.startswith("No valid image files were selected")
        assert len(exc_info.value.errors) == 2


class TestSanitizeTitle:

    def test_invalid_characters_replaced(self):
        assert sanitize_title("my photo?.png") == "my photo_"

    def test_each_reserved_character_replaced(self):
        assert sanitize_title('a<b>c:d"e|f*g.jpg') == "a_b_c_d_e_f_g"

    def test_extension_only_is_untitled(self):
        assert sanitize_title(".png") == "Untitled"

    def test_blank_stem_is_kept(self):
        assert sanitize_title("   .png") == "   "

    def test_directory_parts_are_dropped(self):
        assert sanitize_title("C:\\Users\\me\\Pictures\\festival.jpg") == "festival"

    def test_long_names_truncated_to_ninety(self):
        assert sanitize_title("a" * 150 + ".png") == "a" * 90

    def test_only_last_extension_stripped(self):
        assert sanitize_title("temple.front.jpeg") == "temple.front"

    def test_split_extension(self):
        assert split_extension("photo.PNG") == ("photo", ".PNG")
        assert split_extension("noext") == ("noext", "")


class TestBuildRecord:

    def _persisted(self, filename="my photo?.png"):
        candidate = UploadCandidate(file=make_file(filename), extension=".png")
        return PersistedFile(candidate=candidate, stored_name="abc.png", public_path="/uploads/gallery/abc.png")

    def test_builds_record_from_persisted_file(self):
        now = datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        record = build_record(self._persisted(), "  Temple  ", now)

        assert record.title == "my photo_"
        assert record.category == "Temple"
        assert record.image_path == "/uploads/gallery/abc.png"
        assert record.description == ""
        assert record.upload_date == now

    def test_blank_category_defaults_to_general(self):
        assert build_record(self._persisted(), "  ").category == "General"


class TestSummarize:

    def test_full_success(self):
        assert summarize(3, []) == "Successfully uploaded 3 image(s) to the gallery!"

    def test_lists_up_to_five_failures(self):
        errors = [f"error {i}" for i in range(7)]
        message = summarize(1, errors)

        assert "However, 7 file(s) failed:" in message
        assert "• error 4" in message
        assert "error 5" not in message
        assert message.endswith("• ... and 2 more")


class TestLocalFilePersister:

    @pytest.mark.asyncio
    async def test_ensure_writable_creates_directory(self, persister):
        assert not persister.upload_dir.exists()
        await persister.ensure_writable()

        assert persister.upload_dir.is_dir()
        assert list(persister.upload_dir.iterdir()) == []

    @pytest.mark.asyncio
    async def test_ensure_writable_fails_when_directory_cannot_exist(self, tmp_path):
        blocker = tmp_path / "not_a_dir"
        blocker.write_text("file in the way")
        persister = LocalFilePersister(blocker / "gallery", "/uploads/gallery")

        with pytest.raises(StorageUnavailableError):
            await persister.ensure_writable()

    @pytest.mark.asyncio
    async def test_persist_writes_under_random_name(self, persister):
        await persister.ensure_writable()
        candidate = UploadCandidate(file=make_file("photo.PNG", 10), extension=".png")

        first = await persister.persist(candidate)
        second = await persister.persist(candidate)

        assert first.stored_name != second.stored_name
        assert first.stored_name.endswith(".png")
        assert len(first.stored_name) == 32 + len(".png")
        assert first.public_path == f"/uploads/gallery/{first.stored_name}"
        assert (persister.upload_dir / first.stored_name).read_bytes() == b"x" * 10

    @pytest.mark.asyncio
    async def test_failed_write_removes_partial_file(self, persister):
        await persister.ensure_writable()
        written = []

        def failing_write(path, content):
            path.write_bytes(content[:1])
            written.append(path)
            raise OSError("disk full")

        persister._write = failing_write
        candidate = UploadCandidate(file=make_file("a.png"), extension=".png")

        with pytest.raises(FileStorageError, match="disk full"):
            await persister.persist(candidate)

        assert written and not written[0].exists()

    @pytest.mark.asyncio
    async def test_name_collision_leaves_existing_file_alone(self, persister, monkeypatch):
        await persister.ensure_writable()
        existing = persister.upload_dir / "taken.png"
        existing.write_bytes(b"someone else")
        monkeypatch.setattr(gallery_upload, "generate_stored_name", lambda extension: "taken.png")

        with pytest.raises(FileStorageError, match="already in use"):
            await persister.persist(UploadCandidate(file=make_file("a.png"), extension=".png"))

        assert existing.read_bytes() == b"someone else"

    @pytest.mark.asyncio
    async def test_discard_removes_file(self, persister):
        await persister.ensure_writable()
        persisted = await persister.persist(UploadCandidate(file=make_file("a.png"), extension=".png"))

        assert await persister.discard(persisted.public_path) is True
        assert not (persister.upload_dir / persisted.stored_name).exists()
        assert await persister.discard("/elsewhere/a.png") is False


class TestCommitBatch:

    @pytest.mark.asyncio
    async def test_empty_batch_fails(self, db_session):
        with pytest.raises(BatchCommitError, match="No images were successfully uploaded"):
            await commit_batch(db_session, [])

    @pytest.mark.asyncio
    async def test_database_error_surfaces_underlying_message(self, db_session, monkeypatch):
        async def failing_commit():
            raise OperationalError("INSERT INTO gallery_images", {}, Exception("database is locked"))

        monkeypatch.setattr(db_session, "commit", failing_commit)
        record = GalleryImage(title="t", image_path="/uploads/gallery/t.png", category="Temple")

        with pytest.raises(BatchCommitError) as exc_info:
            await commit_batch(db_session, [record])

        assert exc_info.value.message == "database is locked"
        monkeypatch.undo()
        assert await count_images(db_session) == 0


class TestProcessUpload:

    @pytest.mark.asyncio
    async def test_mixed_batch_scenario(self, db_session, persister):
        files = [
            SubmittedFile(filename="temple.png", size=2 * MB, content=b"p" * (2 * MB)),
            SubmittedFile(filename="huge.jpg", size=6 * MB, content=b"j" * (6 * MB)),
        ]

        result = await process_upload(db_session, files, "Temple", persister)

        assert len(result.images) == 1
        assert result.errors == ["File 'huge.jpg' exceeds the 5MB size limit."]
        assert result.message.startswith("Successfully uploaded 1 image(s) to the gallery!")

        rows = (await db_session.execute(select(GalleryImage))).scalars().all()
        assert len(rows) == 1
        assert rows[0].category == "Temple"
        assert rows[0].title == "temple"
        stored = persister.upload_dir / rows[0].image_path.rsplit("/", 1)[-1]
        assert stored.stat().st_size == 2 * MB

    @pytest.mark.asyncio
    async def test_every_persisted_record_has_a_file(self, db_session, persister):
        files = [make_file(f"img{i}.jpg") for i in range(3)]

        result = await process_upload(db_session, files, "Festival", persister)

        assert len(result.images) == 3
        for image in result.images:
            assert image.id is not None
            assert (persister.upload_dir / image.image_path.rsplit("/", 1)[-1]).exists()

    @pytest.mark.asyncio
    async def test_storage_failure_skips_only_that_file(self, db_session, persister):
        original_write = LocalFilePersister._write

        def flaky_write(path, content):
            if content.startswith(b"bad"):
                raise OSError("write failed")
            return original_write(path, content)

        persister._write = flaky_write
        files = [
            SubmittedFile(filename="good.png", size=4, content=b"good"),
            SubmittedFile(filename="bad.png", size=3, content=b"bad"),
        ]

        result = await process_upload(db_session, files, "Temple", persister)

        assert [img.title for img in result.images] == ["good"]
        assert result.errors == ["'bad.png': write failed"]
        assert len(list(persister.upload_dir.iterdir())) == 1

    @pytest.mark.asyncio
    async def test_all_files_failing_storage_writes_nothing(self, db_session, persister):
        def broken_write(path, content):
            raise OSError("read-only file system")

        persister._write = broken_write

        with pytest.raises(BatchCommitError) as exc_info:
            await process_upload(db_session, [make_file("a.png")], "Temple", persister)

        assert exc_info.value.errors == ["'a.png': read-only file system"]
        assert await count_images(db_session) == 0

    @pytest.mark.asyncio
    async def test_invalid_batch_touches_neither_disk_nor_database(self, db_session, persister):
        with pytest.raises(UploadValidationError):
            await process_upload(db_session, [make_file("notes.txt")], "Temple", persister)

        assert not persister.upload_dir.exists()
        assert await count_images(db_session) == 0

    @pytest.mark.asyncio
    async def test_unwritable_directory_aborts_request(self, db_session, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        persister = LocalFilePersister(blocker / "gallery", "/uploads/gallery")

        with pytest.raises(StorageUnavailableError):
            await process_upload(db_session, [make_file("a.png")], "Temple", persister)

        assert await count_images(db_session) == 0

    @pytest.mark.asyncio
    async def test_commit_failure_persists_nothing_and_removes_files(self, db_session, persister, monkeypatch):
        async def failing_commit():
            raise OperationalError("INSERT INTO gallery_images", {}, Exception("connection refused"))

        monkeypatch.setattr(db_session, "commit", failing_commit)
        files = [make_file("a.png"), make_file("b.jpg")]

        with pytest.raises(BatchCommitError) as exc_info:
            await process_upload(db_session, files, "Temple", persister)

        assert exc_info.value.message == "connection refused"
        assert list(persister.upload_dir.iterdir()) == []
        monkeypatch.undo()
        assert await count_images(db_session) == 0
