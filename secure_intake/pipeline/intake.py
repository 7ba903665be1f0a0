import hashlib

from secure_intake.classification.classifier import ContentClassifier
from secure_intake.config.settings import Settings
from secure_intake.logging.logger import Log
from secure_intake.pipeline.exceptions import IngestionFailed, IntakeError
from secure_intake.pipeline.models import FinalizedAsset, UploadRequest
from secure_intake.pipeline.pipeline import IntakeContext, IntakeStep
from secure_intake.pipeline.steps import (
    ClassifyStep,
    DiscardStagedStep,
    FinalizeStep,
    SanitizeMarkupStep,
    StageUploadStep,
)
from secure_intake.sanitization.factory import SanitizerFactory
from secure_intake.storage.name_generator import NameGenerator
from secure_intake.storage.path_resolver import PathResolver


def owner_fingerprint(owner_token: str | None) -> str:
    """Short stable digest of the caller token, safe to write to logs."""
    if not owner_token:
        return "anonymous"
    return hashlib.sha256(owner_token.encode("utf-8")).hexdigest()[:12]


class IntakePipeline:
    """Runs one upload through stage -> classify -> sanitize -> finalize.

    Steps run in order on a per-call context. Any fault runs the rollback step
    before it propagates, so a rejected upload leaves nothing on disk.
    Unexpected exceptions are re-raised as ``IngestionFailed``.
    """

    def __init__(self, steps: list[IntakeStep], rollback_step: IntakeStep) -> None:
        self._steps = steps
        self._rollback_step = rollback_step

    def ingest(self, request: UploadRequest) -> FinalizedAsset:
        context = IntakeContext(request=request)
        Log.info(
            f"Received upload from {owner_fingerprint(request.owner_token)} "
            f"(declared {request.declared_content_type!r}, {request.declared_size} bytes)"
        )
        try:
            for step in self._steps:
                context = step.run(context)
        except IntakeError as exc:
            self._reject(context, exc)
            raise
        except Exception as exc:
            self._reject(context, exc)
            raise IngestionFailed(str(exc)) from exc
        except BaseException:
            # caller went away mid-upload; clean up and let the interrupt through
            context.error_message = "interrupted"
            failed_in = context.state.value
            self._rollback_step.run(context)
            Log.warning(f"Upload {context.stem} {context.error_message} in state {failed_in}")
            raise

        if context.asset is None:
            raise IngestionFailed("pipeline finished without a finalized asset")
        return context.asset

    def _reject(self, context: IntakeContext, exc: Exception) -> None:
        context.error_message = str(exc)
        failed_in = context.state.value
        self._rollback_step.run(context)
        if isinstance(exc, IntakeError) and not exc.server_fault:
            Log.warning(
                f"Rejected upload {context.stem} in state {failed_in}: {context.error_message}"
            )
        else:
            Log.exception(
                f"Upload {context.stem} failed in state {failed_in}: {context.error_message}"
            )


def build_intake(settings: Settings) -> IntakePipeline:
    """Build an IntakePipeline with all required components."""
    resolver = PathResolver(settings.storage_root)
    # layout errors surface at startup rather than on the first upload
    resolver.resolve_container(settings.staging_subdir)
    resolver.resolve_container(settings.public_subdir)
    name_generator = NameGenerator()
    classifier = ContentClassifier(sniff_bytes=settings.sniff_bytes)
    sanitizers = SanitizerFactory.create_all(settings)
    steps: list[IntakeStep] = [
        StageUploadStep(resolver, name_generator, settings),
        ClassifyStep(classifier, settings),
        SanitizeMarkupStep(sanitizers, resolver, settings),
        FinalizeStep(resolver, name_generator, settings),
    ]
    return IntakePipeline(steps=steps, rollback_step=DiscardStagedStep())
