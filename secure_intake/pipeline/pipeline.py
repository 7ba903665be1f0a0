from abc import ABC, abstractmethod
from dataclasses import dataclass

from secure_intake.classification.models import ClassificationVerdict
from secure_intake.pipeline.models import FinalizedAsset, IntakeState, StagedFile, UploadRequest


@dataclass(slots=True)
class IntakeContext:
    request: UploadRequest
    state: IntakeState = IntakeState.RECEIVED
    stem: str = ""
    staged: StagedFile | None = None
    verdict: ClassificationVerdict | None = None
    content_type: str = ""
    asset: FinalizedAsset | None = None
    error_message: str = ""


class IntakeStep(ABC):
    @abstractmethod
    def run(self, context: IntakeContext) -> IntakeContext:
        raise NotImplementedError
