"""
Detection API Routes
====================

REST API endpoints for the business registration form detector.

Endpoints:
- POST /api/v1/detection/pages/{context_id}/scan - Run (or coalesce) a detection pass
- GET /api/v1/detection/pages/{context_id}/summary - Last report for a page context
- DELETE /api/v1/detection/pages/{context_id} - Release a closed page context
- GET /api/v1/detection/patterns - Effective pattern table for a region
- POST /api/v1/detection/regions/validate - Validate a region override document
- GET /api/v1/detection/status - Pass coordination counters

Handlers are plain functions so FastAPI runs them in its threadpool; a scan
for a page context that is already being scanned returns immediately with
``deferred=true``.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, HTTPException, Query

from bizform.config import Config
from bizform.models import (
    ContextReleaseResponse, CoordinatorStatus, ErrorDescriptor, PatternsResponse,
    RegionValidationResponse, ScanRequest, ScanResponse, SummaryResponse
)
from bizform.services.detection_pipeline import DetectionPipeline, PageSnapshot
from bizform.services.detection_pipeline.knowledge import normalize_region_code
from bizform.services.detection_pipeline.schema_validation import validate_region_document
from bizform.utils.pass_coordinator import PassCoordinator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/detection", tags=["Form Detection"])


# ============================================================================
# Pipeline Instances (Singletons)
# ============================================================================

_pipeline_instance: Optional[DetectionPipeline] = None
_coordinator_instance: Optional[PassCoordinator] = None


def get_pipeline() -> DetectionPipeline:
    """Get or create the pipeline instance."""
    global _pipeline_instance

    if _pipeline_instance is None:
        _pipeline_instance = DetectionPipeline(time_budget=Config.PASS_TIME_BUDGET_SECONDS)
        logger.info("Initialized DetectionPipeline singleton")

    return _pipeline_instance


def get_coordinator() -> PassCoordinator:
    """Get or create the pass coordinator instance."""
    global _coordinator_instance

    if _coordinator_instance is None:
        _coordinator_instance = PassCoordinator(runner=lambda snapshot: get_pipeline().run(snapshot))
        logger.info("Initialized PassCoordinator singleton")

    return _coordinator_instance


# ============================================================================
# API Endpoints
# ============================================================================

@router.post("/pages/{context_id}/scan", response_model=ScanResponse)
def scan_page(context_id: str, request: ScanRequest) -> ScanResponse:
    """
    Scan a page snapshot for business registration fields.

    The pass runs in five stages:
    1. Region identification (address, then headings)
    2. Element model building (labels, grouping, filtering)
    3. Section segmentation
    4. Field classification
    5. Readiness summary

    If a pass for this context is already running, the snapshot replaces any
    earlier pending one and is scanned when that pass finishes; the response
    then carries ``deferred=true`` and the last completed report (if any).
    """
    try:
        snapshot = PageSnapshot(
            tree=request.tree.model_dump(),
            address=request.address,
            title=request.title,
            heading_text=request.heading_text
        )
        logger.info(f"Scan requested for context {context_id}: {request.address or '<no address>'}")

        result = get_coordinator().submit(context_id, snapshot)
        return ScanResponse(
            success=True,
            deferred=result.deferred,
            report=result.report.to_dict() if result.report else None
        )

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Scan error for context {context_id}: {e}", exc_info=True)
        return ScanResponse(
            success=False,
            error=ErrorDescriptor(code="scan_failed", message=str(e))
        )


@router.get("/pages/{context_id}/summary", response_model=SummaryResponse)
def get_summary(context_id: str) -> SummaryResponse:
    """Get the last completed report for a page context."""
    report = get_coordinator().last_report(context_id)
    if report is None:
        return SummaryResponse(
            success=False,
            context_id=context_id,
            error=ErrorDescriptor(code="no_summary", message="No detection pass has completed for this page")
        )
    return SummaryResponse(success=True, context_id=context_id, report=report.to_dict())


@router.delete("/pages/{context_id}", response_model=ContextReleaseResponse)
def release_page(context_id: str) -> ContextReleaseResponse:
    """
    Release a closed page context and its last report.

    A context with a pass in progress is kept; release it again once the
    pass has finished.
    """
    coordinator = get_coordinator()
    if coordinator.forget(context_id):
        return ContextReleaseResponse(success=True, context_id=context_id)

    if coordinator.is_active(context_id):
        error = ErrorDescriptor(code="pass_active", message="A detection pass is running for this page")
    else:
        error = ErrorDescriptor(code="unknown_context", message="No detection state is held for this page")
    return ContextReleaseResponse(success=False, context_id=context_id, error=error)


@router.get("/patterns", response_model=PatternsResponse)
def get_patterns(
    region: Optional[str] = Query(None, description="Two-letter region code (common table if omitted)")
) -> PatternsResponse:
    """
    Get the effective pattern table for a region.

    Returns the common table merged with the region's override document.
    Regions without an override document get the common table.
    """
    code = None
    if region:
        code = normalize_region_code(region)
        if code is None:
            raise HTTPException(status_code=400, detail=f"Invalid region code: {region}")

    table = get_pipeline().store.get_effective_patterns(code)
    return PatternsResponse(
        region=table.region.upper() if table.region else None,
        total_categories=len(table),
        categories=table.to_dict(),
        diagnostics=list(table.diagnostics)
    )


@router.post("/regions/validate", response_model=RegionValidationResponse)
def validate_region(document: Dict[str, Any] = Body(..., description="Region override document")) -> RegionValidationResponse:
    """
    Validate a region override document against the pattern document schema.

    Checks required fields, priority range, regex well-formedness and that
    the document defines at least one category.
    """
    common_categories = get_pipeline().store.load_common().categories
    report = validate_region_document(document, common_categories, source="request")
    return RegionValidationResponse(
        valid=report.valid,
        categories=report.categories,
        errors=report.errors,
        warnings=report.warnings
    )


@router.get("/status", response_model=CoordinatorStatus)
def get_status() -> CoordinatorStatus:
    """Get detection pass coordination counters."""
    stats = get_coordinator().get_stats()
    return CoordinatorStatus(**stats)
