"""
Job registry initialization.

Registers a handler for every job type whose collaborators are available.
Types left unregistered fail their jobs with a "no handler registered" error.
"""

import logging

from riskjobs.config.settings import Settings
from riskjobs.v1.core.registries import JobRegistry
from riskjobs.v1.jobs.handlers import (
    AiPreviewHandler,
    DocumentTracker,
    GapDetectionHandler,
    GapDetector,
    ParseDocumentHandler,
    ReportGenerationHandler,
    ReportRenderer,
    RiskAnalysisHandler,
    RiskAnalyzer,
    TextExtractor,
)
from riskjobs.v1.jobs.models import JobType
from riskjobs.v1.llm.client import ModelClient

logger = logging.getLogger(__name__)


def register_job_handlers(
    registry: JobRegistry,
    settings: Settings,
    *,
    model_client: ModelClient | None = None,
    documents: DocumentTracker | None = None,
    extractor: TextExtractor | None = None,
    gap_detector: GapDetector | None = None,
    risk_analyzer: RiskAnalyzer | None = None,
    report_renderer: ReportRenderer | None = None,
) -> None:
    """Register the handlers that can be built from the given collaborators."""

    logger.info("Registering job handlers")

    if model_client is not None:
        registry.register(JobType.AI_PREVIEW.value, AiPreviewHandler(model_client))

    if documents is not None and extractor is not None:
        registry.register(
            JobType.PARSE_DOCUMENT.value,
            ParseDocumentHandler(documents, extractor, settings.s3_bucket),
        )

    if gap_detector is not None:
        registry.register(JobType.GAP_DETECTION.value, GapDetectionHandler(gap_detector))

    if risk_analyzer is not None:
        registry.register(JobType.RISK_ANALYSIS.value, RiskAnalysisHandler(risk_analyzer))

    if report_renderer is not None:
        registry.register(
            JobType.REPORT_GENERATION.value, ReportGenerationHandler(report_renderer)
        )

    missing = [t.value for t in JobType if t.value not in registry]
    if missing:
        logger.warning(
            "Job types without handlers", extra={"job_types": missing}
        )

    logger.info(
        "Job handlers registered", extra={"registered_handlers": registry.list()}
    )
