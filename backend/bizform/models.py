"""
Pydantic models for API request/response schemas.
"""
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field
from datetime import datetime


class ElementTreeNode(BaseModel):
    """One element of the serialized page tree sent by the host."""
    tag: str = Field(..., description="Lower-case tag name (input, select, label, h2, ...)")
    attrs: Dict[str, Any] = Field(default_factory=dict, description="Element attributes")
    text: Optional[str] = Field(None, description="The element's own text (not its descendants')")
    rect: Optional[Dict[str, float]] = Field(None, description="Bounding rect: left, top, width, height (px)")
    style: Dict[str, Any] = Field(default_factory=dict, description="Computed style subset (display, font_size, ...)")
    value: Optional[str] = None
    checked: Optional[bool] = None
    children: List['ElementTreeNode'] = Field(default_factory=list)


ElementTreeNode.model_rebuild()


class ScanRequest(BaseModel):
    """Page snapshot to scan."""
    address: str = Field("", description="Page URL")
    title: str = Field("", description="Document title")
    heading_text: str = Field("", description="Prominent heading text, if the host extracted it")
    tree: ElementTreeNode = Field(..., description="Serialized element tree of the page body")


class ErrorDescriptor(BaseModel):
    """Structured error returned instead of a report."""
    code: str = Field(..., description="Machine-readable code: no_summary, scan_failed, invalid_region, ...")
    message: str


class ScanResponse(BaseModel):
    """Response for a scan trigger."""
    success: bool
    deferred: bool = Field(False, description="True when the scan was coalesced into the pass already running")
    report: Optional[Dict[str, Any]] = None
    error: Optional[ErrorDescriptor] = None


class SummaryResponse(BaseModel):
    """Last report computed for a page context."""
    success: bool
    context_id: str
    report: Optional[Dict[str, Any]] = None
    error: Optional[ErrorDescriptor] = None


class ContextReleaseResponse(BaseModel):
    """Outcome of releasing a closed page context."""
    success: bool
    context_id: str
    error: Optional[ErrorDescriptor] = None


class PatternsResponse(BaseModel):
    """Effective pattern table for a region."""
    region: Optional[str] = None
    total_categories: int
    categories: Dict[str, Dict[str, Any]]
    diagnostics: List[str] = Field(default_factory=list)


class RegionValidationResponse(BaseModel):
    """Validation report for a region override document."""
    valid: bool
    categories: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class CoordinatorStatus(BaseModel):
    """Detection pass coordination counters."""
    contexts: int
    active_passes: int
    passes_run: int
    triggers_coalesced: int
    session_duration: float


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str
    timestamp: datetime
