import io
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from secure_intake.classification.classifier import ContentClassifier
from secure_intake.classification.models import ClassificationVerdict
from secure_intake.config.settings import Settings
from secure_intake.pipeline.exceptions import IngestionFailed, SanitizationFailed, SizeError, TypeRejected
from secure_intake.pipeline.models import IntakeState, StagedFile, UploadRequest
from secure_intake.pipeline.pipeline import IntakeContext
from secure_intake.pipeline.steps import (
    ClassifyStep,
    DiscardStagedStep,
    FinalizeStep,
    SanitizeMarkupStep,
    StageUploadStep,
    iter_chunks,
)
from secure_intake.storage.name_generator import NameGenerator
from secure_intake.storage.path_resolver import PathResolver
from tests.payloads import files_under, make_png


def _staged_context(path: Path, declared: str = "image/png", stem: str = "1700000000000-abc") -> IntakeContext:
    context = IntakeContext(request=UploadRequest(stream=[], declared_content_type=declared))
    context.stem = stem
    context.staged = StagedFile(path=path, byte_length=path.stat().st_size, declared_content_type=declared)
    context.state = IntakeState.STAGED
    return context


class TestIterChunks:
    def test_reads_file_like_objects_in_chunks(self) -> None:
        request = UploadRequest(stream=io.BytesIO(b"abcdefg"))

        assert list(iter_chunks(request, 3)) == [b"abc", b"def", b"g"]

    def test_passes_iterables_through_skipping_empty_chunks(self) -> None:
        request = UploadRequest(stream=[b"ab", b"", bytearray(b"cd")])

        assert list(iter_chunks(request, 1024)) == [b"ab", b"cd"]


class TestStageUploadStep:
    def _step(self, settings: Settings) -> StageUploadStep:
        return StageUploadStep(PathResolver(settings.storage_root), NameGenerator(), settings)

    def test_writes_staged_file(self, settings: Settings, storage_root: Path) -> None:
        data = make_png()
        context = IntakeContext(request=UploadRequest(stream=io.BytesIO(data)))

        context = self._step(settings).run(context)

        assert context.state is IntakeState.STAGED
        assert context.staged is not None
        assert context.staged.byte_length == len(data)
        assert context.staged.path.name == f"{context.stem}.part"
        assert context.staged.path.read_bytes() == data
        assert context.staged.path.parent == (storage_root / "uploads").resolve()

    def test_declared_size_rejected_before_reading(self, settings: Settings) -> None:
        stream = io.BytesIO(make_png())
        context = IntakeContext(request=UploadRequest(stream=stream, declared_size=100))

        with pytest.raises(SizeError):
            self._step(settings).run(context)

        assert stream.tell() == 0
        assert context.staged is None

    def test_stops_writing_once_maximum_exceeded(self, storage_root: Path) -> None:
        settings = Settings(storage_root=str(storage_root), max_file_size_bytes=4096)
        consumed: list[int] = []

        def chunks():  # type: ignore[no-untyped-def]
            for index in range(100):
                consumed.append(index)
                yield b"x" * 1024

        context = IntakeContext(request=UploadRequest(stream=chunks()))

        with pytest.raises(SizeError):
            self._step(settings).run(context)

        assert len(consumed) == 5
        assert context.staged is not None
        assert context.staged.path.stat().st_size == 4096

    def test_rejects_too_small_actual_size(self, settings: Settings) -> None:
        context = IntakeContext(request=UploadRequest(stream=[b"x" * 1024], declared_size=4096))

        with pytest.raises(SizeError, match="actual size 1024"):
            self._step(settings).run(context)

    def test_size_error_message_is_public_safe(self, settings: Settings) -> None:
        context = IntakeContext(request=UploadRequest(stream=[b"x" * 10]))

        with pytest.raises(SizeError) as exc_info:
            self._step(settings).run(context)

        assert exc_info.value.public_message == "File size must be between 2 KB and 5 MB"


class TestClassifyStep:
    def test_sets_sniffed_content_type(self, tmp_path: Path, settings: Settings) -> None:
        path = tmp_path / "a.part"
        path.write_bytes(make_png())

        context = ClassifyStep(ContentClassifier(), settings).run(_staged_context(path))

        assert context.content_type == "image/png"
        assert context.state is IntakeState.CLASSIFIED

    def test_rejects_disallowed_content(self, tmp_path: Path, settings: Settings) -> None:
        path = tmp_path / "a.part"
        path.write_bytes(b"MZ" + b"\x00" * 4096)

        with pytest.raises(TypeRejected):
            ClassifyStep(ContentClassifier(), settings).run(_staged_context(path))

    def test_declared_type_is_advisory_by_default(self, tmp_path: Path, settings: Settings) -> None:
        path = tmp_path / "a.part"
        path.write_bytes(make_png())

        context = ClassifyStep(ContentClassifier(), settings).run(
            _staged_context(path, declared="text/plain")
        )

        assert context.content_type == "image/png"

    def test_strict_policy_requires_agreement(self, tmp_path: Path, storage_root: Path) -> None:
        settings = Settings(storage_root=str(storage_root), require_declared_type_match=True)
        path = tmp_path / "a.part"
        path.write_bytes(make_png())

        with pytest.raises(TypeRejected, match="does not match"):
            ClassifyStep(ContentClassifier(), settings).run(
                _staged_context(path, declared="text/plain")
            )

    def test_strict_policy_accepts_aliases(self, tmp_path: Path, storage_root: Path) -> None:
        settings = Settings(storage_root=str(storage_root), require_declared_type_match=True)
        path = tmp_path / "a.part"
        path.write_bytes(b"\xff\xd8\xff\xe0" + b"\x00" * 4096)

        context = ClassifyStep(ContentClassifier(), settings).run(
            _staged_context(path, declared="image/jpg")
        )

        assert context.content_type == "image/jpeg"

    def test_declared_type_alone_never_proves_type(self, tmp_path: Path, settings: Settings) -> None:
        classifier = MagicMock(spec=ContentClassifier)
        classifier.classify_file.return_value = ClassificationVerdict(
            sniffed_content_type=None, allowed=False
        )
        path = tmp_path / "a.part"
        path.write_bytes(b"x")

        with pytest.raises(TypeRejected):
            ClassifyStep(classifier, settings).run(_staged_context(path, declared="image/png"))


class TestSanitizeMarkupStep:
    def test_skips_non_markup(self, tmp_path: Path, settings: Settings) -> None:
        path = tmp_path / "a.part"
        path.write_bytes(make_png())
        context = _staged_context(path)
        context.verdict = ClassificationVerdict(sniffed_content_type="image/png", allowed=True)
        sanitizer = MagicMock()

        SanitizeMarkupStep({"image/svg+xml": sanitizer}, PathResolver(tmp_path), settings).run(context)

        sanitizer.sanitize.assert_not_called()
        assert path.read_bytes() == make_png()

    def test_overwrites_staged_bytes(self, tmp_path: Path, settings: Settings) -> None:
        path = tmp_path / "a.part"
        path.write_bytes(b"<svg><script/></svg>")
        context = _staged_context(path, declared="image/svg+xml")
        context.verdict = ClassificationVerdict(sniffed_content_type="image/svg+xml", allowed=True)
        context.content_type = "image/svg+xml"
        sanitizer = MagicMock()
        sanitizer.sanitize.return_value = b"<svg/>"

        context = SanitizeMarkupStep(
            {"image/svg+xml": sanitizer}, PathResolver(tmp_path), settings
        ).run(context)

        assert path.read_bytes() == b"<svg/>"
        assert context.staged is not None
        assert context.staged.byte_length == 6
        assert context.state is IntakeState.SANITIZING

    def test_missing_sanitizer_is_a_failure(self, tmp_path: Path, settings: Settings) -> None:
        path = tmp_path / "a.part"
        path.write_bytes(b"<svg/>")
        context = _staged_context(path, declared="image/svg+xml")
        context.verdict = ClassificationVerdict(sniffed_content_type="image/svg+xml", allowed=True)
        context.content_type = "image/svg+xml"

        with pytest.raises(SanitizationFailed):
            SanitizeMarkupStep({}, PathResolver(tmp_path), settings).run(context)

    def test_rejects_output_larger_than_max_size(self, tmp_path: Path) -> None:
        settings = Settings(storage_root=str(tmp_path), min_file_size_bytes=1, max_file_size_bytes=64)
        path = tmp_path / "a.part"
        path.write_bytes(b"<svg/>")
        context = _staged_context(path, declared="image/svg+xml")
        context.verdict = ClassificationVerdict(sniffed_content_type="image/svg+xml", allowed=True)
        context.content_type = "image/svg+xml"
        sanitizer = MagicMock()
        sanitizer.sanitize.return_value = b"<svg>" + b"&#x27;" * 20 + b"</svg>"

        with pytest.raises(SizeError) as exc_info:
            SanitizeMarkupStep({"image/svg+xml": sanitizer}, PathResolver(tmp_path), settings).run(
                context
            )

        assert "byte limit" in str(exc_info.value)
        assert path.read_bytes() == b"<svg/>"


class TestFinalizeStep:
    def _stage(self, settings: Settings, data: bytes) -> IntakeContext:
        resolver = PathResolver(settings.storage_root)
        container = resolver.resolve_container(settings.staging_subdir)
        path = container / "1700000000000-abc.part"
        path.write_bytes(data)
        context = _staged_context(path)
        context.content_type = "image/png"
        return context

    def test_moves_staged_file_to_public_name(self, settings: Settings, storage_root: Path) -> None:
        settings = Settings(storage_root=str(storage_root), public_base_url="https://cdn.example.com/")
        data = make_png()
        context = self._stage(settings, data)
        resolver = PathResolver(settings.storage_root)

        context = FinalizeStep(resolver, NameGenerator(), settings).run(context)

        asset = context.asset
        assert asset is not None
        assert asset.stored_name == "1700000000000-abc.png"
        assert asset.public_path == "/uploads/1700000000000-abc.png"
        assert asset.download_url == "https://cdn.example.com/uploads/1700000000000-abc.png"
        assert asset.byte_size == len(data)
        assert context.staged is None
        assert context.state is IntakeState.FINALIZED
        assert files_under(storage_root) == [storage_root / "uploads" / asset.stored_name]

    def test_refuses_to_overwrite_existing_asset(self, settings: Settings, storage_root: Path) -> None:
        context = self._stage(settings, make_png())
        existing = storage_root / "uploads" / "1700000000000-abc.png"
        existing.write_bytes(b"original")
        resolver = PathResolver(settings.storage_root)

        with pytest.raises(IngestionFailed, match="already exists"):
            FinalizeStep(resolver, NameGenerator(), settings).run(context)

        assert existing.read_bytes() == b"original"
        assert context.staged is not None


class TestDiscardStagedStep:
    def test_removes_staged_file(self, tmp_path: Path) -> None:
        path = tmp_path / "a.part"
        path.write_bytes(b"x")

        context = DiscardStagedStep().run(_staged_context(path))

        assert not path.exists()
        assert context.staged is None
        assert context.state is IntakeState.REJECTED

    def test_without_staged_file_is_a_no_op(self) -> None:
        context = IntakeContext(request=UploadRequest(stream=[]))

        context = DiscardStagedStep().run(context)

        assert context.state is IntakeState.REJECTED

    def test_unlink_failure_is_logged_not_raised(self, tmp_path: Path) -> None:
        path = MagicMock(spec=Path)
        path.unlink.side_effect = PermissionError("read-only")
        context = IntakeContext(request=UploadRequest(stream=[]))
        context.staged = StagedFile(path=path, byte_length=1, declared_content_type="")

        context = DiscardStagedStep().run(context)

        path.unlink.assert_called_once_with(missing_ok=True)
        assert context.state is IntakeState.REJECTED
