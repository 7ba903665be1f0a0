import os
from collections.abc import Iterator
from dataclasses import replace
from pathlib import Path, PurePosixPath

from secure_intake.classification.classifier import ContentClassifier
from secure_intake.classification.formats import normalize_content_type
from secure_intake.config.settings import Settings
from secure_intake.logging.logger import Log
from secure_intake.pipeline.exceptions import (
    IngestionFailed,
    SanitizationFailed,
    SizeError,
    TypeRejected,
)
from secure_intake.pipeline.models import (
    FinalizedAsset,
    IntakeState,
    StagedFile,
    UploadRequest,
    display_label,
)
from secure_intake.pipeline.pipeline import IntakeContext, IntakeStep
from secure_intake.sanitization.base import BaseMarkupSanitizer
from secure_intake.storage.name_generator import NameGenerator
from secure_intake.storage.path_resolver import PathResolver


def iter_chunks(request: UploadRequest, chunk_bytes: int) -> Iterator[bytes]:
    """Yield the request body from a file-like object or an iterable of chunks."""
    stream = request.stream
    read = getattr(stream, "read", None)
    if read is None:
        for chunk in stream:  # type: ignore[union-attr]
            if chunk:
                yield bytes(chunk)
        return
    while True:
        chunk = read(chunk_bytes)
        if not chunk:
            return
        yield bytes(chunk)


def _size_message(settings: Settings) -> str:
    return (
        f"File size must be between {settings.min_file_size_bytes // 1024} KB "
        f"and {settings.max_file_size_bytes // (1024 * 1024)} MB"
    )


class StageUploadStep(IntakeStep):
    """Writes the request body to a new file under the staging directory."""

    def __init__(
        self,
        resolver: PathResolver,
        name_generator: NameGenerator,
        settings: Settings,
    ) -> None:
        self._resolver = resolver
        self._name_generator = name_generator
        self._settings = settings

    def run(self, context: IntakeContext) -> IntakeContext:
        declared_size = context.request.declared_size
        if declared_size is not None:
            self._check_size(declared_size, "declared")

        container = self._resolver.resolve_container(self._settings.staging_subdir)
        stem = self._name_generator.new_stem()
        target = self._resolver.resolve_target(container, self._name_generator.staging_name(stem))
        context.stem = stem

        written = 0
        with target.open("xb") as fh:
            # from here on the file is ours and rollback must remove it
            context.staged = StagedFile(
                path=target,
                byte_length=0,
                declared_content_type=context.request.declared_content_type,
            )
            for chunk in iter_chunks(context.request, self._settings.stream_chunk_bytes):
                written += len(chunk)
                if written > self._settings.max_file_size_bytes:
                    raise SizeError(
                        f"upload exceeded {self._settings.max_file_size_bytes} bytes while staging",
                        public_message=_size_message(self._settings),
                    )
                fh.write(chunk)

        self._check_size(written, "actual")
        context.staged = replace(context.staged, byte_length=written)
        context.state = IntakeState.STAGED
        Log.info(f"Staged upload {stem}: {written} bytes")
        return context

    def _check_size(self, size: int, kind: str) -> None:
        if size < self._settings.min_file_size_bytes or size > self._settings.max_file_size_bytes:
            raise SizeError(
                f"{kind} size {size} outside "
                f"[{self._settings.min_file_size_bytes}, {self._settings.max_file_size_bytes}]",
                public_message=_size_message(self._settings),
            )


class ClassifyStep(IntakeStep):
    """Sniffs the staged bytes and applies the content type policy."""

    def __init__(self, classifier: ContentClassifier, settings: Settings) -> None:
        self._classifier = classifier
        self._settings = settings

    def run(self, context: IntakeContext) -> IntakeContext:
        if context.staged is None:
            raise ValueError("IntakeContext.staged must be set before classification")
        verdict = self._classifier.classify_file(context.staged.path)
        context.verdict = verdict
        declared = normalize_content_type(context.request.declared_content_type)

        if not verdict.allowed or verdict.sniffed_content_type is None:
            raise TypeRejected(
                f"sniffed type {verdict.sniffed_content_type!r} is not allowed "
                f"(declared {declared!r})"
            )
        if declared != verdict.sniffed_content_type:
            if self._settings.require_declared_type_match:
                raise TypeRejected(
                    f"declared type {declared!r} does not match sniffed type "
                    f"{verdict.sniffed_content_type!r}",
                    public_message="File type does not match its content",
                )
            if declared:
                Log.warning(
                    f"Upload {context.stem}: declared {declared!r}, "
                    f"sniffed {verdict.sniffed_content_type!r}; using sniffed type"
                )

        context.content_type = verdict.sniffed_content_type
        context.state = IntakeState.CLASSIFIED
        Log.info(f"Classified upload {context.stem} as {context.content_type}")
        return context


class SanitizeMarkupStep(IntakeStep):
    """Rewrites markup uploads in place; other formats pass through untouched."""

    def __init__(
        self,
        sanitizers: dict[str, BaseMarkupSanitizer],
        resolver: PathResolver,
        settings: Settings,
    ) -> None:
        self._sanitizers = sanitizers
        self._resolver = resolver
        self._settings = settings

    def run(self, context: IntakeContext) -> IntakeContext:
        if context.verdict is None or context.staged is None:
            raise ValueError("IntakeContext.verdict must be set before sanitization")
        if not context.verdict.is_markup:
            return context

        context.state = IntakeState.SANITIZING
        sanitizer = self._sanitizers.get(context.content_type)
        if sanitizer is None:
            raise SanitizationFailed(f"no sanitizer configured for {context.content_type!r}")

        staged = context.staged
        sanitized = sanitizer.sanitize(staged.path.read_bytes())
        if len(sanitized) > self._settings.max_file_size_bytes:
            # re-escaping can grow the document past the upload bound
            raise SizeError(
                f"sanitized markup is {len(sanitized)} bytes, "
                f"over the {self._settings.max_file_size_bytes} byte limit",
                public_message=_size_message(self._settings),
            )
        target = self._resolver.resolve_target(staged.path.parent, staged.path.name)
        target.write_bytes(sanitized)
        context.staged = replace(staged, byte_length=len(sanitized))
        Log.info(
            f"Sanitized upload {context.stem}: {staged.byte_length} -> {len(sanitized)} bytes"
        )
        return context


class FinalizeStep(IntakeStep):
    """Moves the staged file to its public name without overwriting anything."""

    def __init__(
        self,
        resolver: PathResolver,
        name_generator: NameGenerator,
        settings: Settings,
    ) -> None:
        self._resolver = resolver
        self._name_generator = name_generator
        self._settings = settings

    def run(self, context: IntakeContext) -> IntakeContext:
        staged = context.staged
        if staged is None or not context.content_type:
            raise ValueError("IntakeContext must be classified before finalization")

        container = self._resolver.resolve_container(self._settings.public_subdir)
        stored_name = self._name_generator.generate(context.content_type, stem=context.stem)
        target = self._resolver.resolve_target(container, stored_name)
        self._move_exclusive(staged.path, target)
        context.staged = None

        public_path = str(PurePosixPath("/", *Path(self._settings.public_subdir).parts, stored_name))
        context.asset = FinalizedAsset(
            stored_name=stored_name,
            public_path=public_path,
            byte_size=staged.byte_length,
            content_type=context.content_type,
            original_name=display_label(context.request.declared_filename),
            download_url=f"{self._settings.public_base_url.rstrip('/')}{public_path}",
        )
        context.state = IntakeState.FINALIZED
        Log.info(f"Finalized upload {context.stem} as {stored_name}")
        return context

    def _move_exclusive(self, source: Path, target: Path) -> None:
        # link() refuses an existing destination, unlike rename() on POSIX
        try:
            os.link(source, target)
        except FileExistsError as exc:
            raise IngestionFailed(f"finalized name already exists: {target.name}") from exc
        try:
            source.unlink()
        except OSError:
            target.unlink(missing_ok=True)
            raise


class DiscardStagedStep(IntakeStep):
    """Rollback: removes the staged file, if any. Never raises."""

    def run(self, context: IntakeContext) -> IntakeContext:
        staged = context.staged
        context.state = IntakeState.REJECTED
        if staged is None:
            return context
        try:
            staged.path.unlink(missing_ok=True)
            Log.info(f"Discarded staged upload {context.stem}")
        except OSError as exc:
            Log.error(f"Failed to discard staged upload {context.stem}: {exc}")
        else:
            context.staged = None
        return context
