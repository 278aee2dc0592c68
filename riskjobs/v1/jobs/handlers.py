"""
Job handlers for the risk assessment pipeline.

Each handler validates its job input and delegates the business work to an
injected collaborator. Handlers raise on any unrecoverable condition and leave
status bookkeeping of the job itself to the processor.
"""

import logging
from enum import Enum
from typing import Any, Protocol, TypeVar

import pydantic
from pydantic import BaseModel, Field

from riskjobs.v1.core.exceptions import ValidationError
from riskjobs.v1.llm.client import ModelClient, PromptPreviewRequest

logger = logging.getLogger(__name__)

InputT = TypeVar("InputT", bound=BaseModel)


class DocumentStatus(str, Enum):
    """Processing status of an uploaded assessment document."""

    PARSING = "PARSING"
    PARSED = "PARSED"
    FAILED = "FAILED"


# Collaborators provided by the business-logic layer


class DocumentTracker(Protocol):
    async def set_status(
        self,
        document_id: str,
        status: DocumentStatus,
        error_message: str | None = None,
    ) -> None: ...


class TextExtractor(Protocol):
    async def analyze_document(self, bucket: str, key: str) -> dict[str, Any]: ...


class GapDetector(Protocol):
    async def detect_gaps(self, assessment_id: str) -> dict[str, Any]: ...


class RiskAnalyzer(Protocol):
    async def analyze(self, assessment_id: str) -> dict[str, Any]: ...


class ReportRenderer(Protocol):
    async def render(self, assessment_id: str) -> dict[str, Any]: ...


# Job inputs


class ParseDocumentInput(BaseModel):
    assessment_id: str = Field(..., min_length=1)
    document_id: str = Field(..., min_length=1)
    s3_key: str = Field(..., min_length=1)


class AssessmentInput(BaseModel):
    assessment_id: str = Field(..., min_length=1)


def parse_input(model: type[InputT], payload: dict[str, Any]) -> InputT:
    """Validate a job input against its model."""
    try:
        return model.model_validate(payload)
    except pydantic.ValidationError as e:
        raise ValidationError(
            f"Invalid {model.__name__}: {e.error_count()} validation error(s)",
            {"errors": e.errors(include_url=False)},
        ) from e


class AiPreviewHandler:
    """
    Runs a prompt preview against the model runtime.

    Payload expected:
    {
        "system_prompt": "...",
        "user_prompt_template": "Analyze {{category}}",
        "variables": {"category": "FINANCIAL"}   # optional
    }
    """

    def __init__(self, model_client: ModelClient):
        self.model_client = model_client

    async def execute(self, payload: dict[str, Any]) -> dict[str, Any]:
        request = parse_input(PromptPreviewRequest, payload)
        return await self.model_client.preview(request)


class ParseDocumentHandler:
    """
    Extracts text and tables from an uploaded document.

    Payload expected:
    {
        "assessment_id": "...",
        "document_id": "...",
        "s3_key": "assessments/<a>/documents/<d>/file.pdf"
    }
    """

    def __init__(
        self,
        documents: DocumentTracker,
        extractor: TextExtractor,
        bucket: str,
    ):
        self.documents = documents
        self.extractor = extractor
        self.bucket = bucket

    async def execute(self, payload: dict[str, Any]) -> dict[str, Any]:
        job_input = parse_input(ParseDocumentInput, payload)

        logger.info(
            "Parsing document",
            extra={"document_id": job_input.document_id, "s3_key": job_input.s3_key},
        )

        await self.documents.set_status(job_input.document_id, DocumentStatus.PARSING)
        extraction = await self.extractor.analyze_document(self.bucket, job_input.s3_key)
        await self.documents.set_status(job_input.document_id, DocumentStatus.PARSED)

        logger.info(
            "Document parsed",
            extra={
                "document_id": job_input.document_id,
                "pages": extraction.get("pages"),
            },
        )

        return extraction

    async def on_failure(self, payload: dict[str, Any], error: Exception) -> None:
        """Flag the document as failed once its parse job gave up."""
        document_id = payload.get("document_id")
        if not document_id:
            logger.warning("Parse job failed without a document_id in its input")
            return

        logger.error(
            "Document parse failed",
            extra={"document_id": document_id, "error": str(error)},
        )
        await self.documents.set_status(
            document_id, DocumentStatus.FAILED, error_message=str(error)
        )


class GapDetectionHandler:
    """Finds missing assessment fields after a document was parsed."""

    def __init__(self, detector: GapDetector):
        self.detector = detector

    async def execute(self, payload: dict[str, Any]) -> dict[str, Any]:
        job_input = parse_input(AssessmentInput, payload)
        result = await self.detector.detect_gaps(job_input.assessment_id)
        return {"assessment_id": job_input.assessment_id, **result}


class RiskAnalysisHandler:
    """Scores an assessment's risk categories."""

    def __init__(self, analyzer: RiskAnalyzer):
        self.analyzer = analyzer

    async def execute(self, payload: dict[str, Any]) -> dict[str, Any]:
        job_input = parse_input(AssessmentInput, payload)
        result = await self.analyzer.analyze(job_input.assessment_id)
        return {"assessment_id": job_input.assessment_id, **result}


class ReportGenerationHandler:
    """Renders the assessment report and returns where it was stored."""

    def __init__(self, renderer: ReportRenderer):
        self.renderer = renderer

    async def execute(self, payload: dict[str, Any]) -> dict[str, Any]:
        job_input = parse_input(AssessmentInput, payload)
        result = await self.renderer.render(job_input.assessment_id)
        return {"assessment_id": job_input.assessment_id, **result}
