"""
Business Registration Form Detection Pipeline
=============================================

Orchestrates one detection pass over a page snapshot.

Pipeline Stages:
----------------
1. REGION: identify the jurisdiction from the address, then headings
2. KNOWLEDGE: fetch the merged pattern table for that region (cached)
3. BUILDING_CONTROLS: element tree -> field records + header candidates
4. SEGMENTING: header bands, layout clusters or a single default section
5. CLASSIFYING: category + confidence per field record
6. SUMMARIZING: statistics, validation checks, readiness gates

Design Principles:
------------------
- The pass itself (stages 3-6) is a pure function of
  (element tree, pattern table, thresholds); see run_detection_pass
- A stage failure never escapes the pass; it becomes a diagnostic and the
  next stage works with the best-effort result
- A pass is bounded in time and size; going over a bound skips the remaining
  stages and the summary is flagged incomplete
- Nothing is mutated once summarizing starts; the report holds frozen records
"""

import logging
import time
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

from bizform.config import Config, DetectionThresholds

from .classifier import FieldClassifier
from .element_model import ElementModelBuilder
from .element_tree import DocumentIndex, clean_text
from .errors import TimeoutAborted
from .geometry import GeometryProvider
from .knowledge import PackagedPatternSource, PatternStore, PatternTable
from .readiness import DetectionSummary, PassStage, ReadinessEvaluator, StageTracker
from .records import ElementModel, FieldRecord, Section, SectionOrigin
from .region import REGION_IDENTIFIER, PageAssessment, RegionIdentifier
from .sections import DEFAULT_SECTION_NAME, SectionSegmenter, SegmentationResult

logger = logging.getLogger(__name__)

T = TypeVar('T')

# Tags whose text is used for region identification when no heading text is supplied
REGION_HEADING_TAGS = ('title', 'h1', 'h2', 'header')


@dataclass(frozen=True)
class PageSnapshot:
    """What the host sends for one page: address, title, headings and element tree."""
    tree: Dict[str, Any]
    address: str = ""
    title: str = ""
    heading_text: str = ""


@dataclass(frozen=True)
class DetectionReport:
    """
    Result of one detection pass.

    Sections are in page order and each field record carries its section
    index; fields_in() returns a section's records in document order.
    """
    summary: DetectionSummary
    sections: Tuple[Section, ...] = ()
    fields: Tuple[FieldRecord, ...] = ()
    region: Optional[str] = None
    assessment: Optional[PageAssessment] = None
    stage: PassStage = PassStage.IDLE
    stage_trail: Tuple[PassStage, ...] = ()
    elapsed_ms: int = 0

    @property
    def incomplete(self) -> bool:
        return self.summary.incomplete

    def fields_in(self, section: Section) -> List[FieldRecord]:
        return [f for f in self.fields if f.section_index == section.index]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            'region': self.region,
            'assessment': self.assessment.to_dict() if self.assessment else None,
            'stage': self.stage.value,
            'stage_trail': [s.value for s in self.stage_trail],
            'elapsed_ms': self.elapsed_ms,
            'summary': self.summary.to_dict(),
            'sections': [
                {**section.to_dict(), 'fields': [f.to_dict() for f in self.fields_in(section)]}
                for section in self.sections
            ]
        }


def _run_stage(name: str, func: Callable[[], T], default: T, diagnostics: List[str]) -> T:
    """Run one stage, turning any failure into a diagnostic and the default result."""
    try:
        return func()
    except TimeoutAborted:
        raise
    except Exception as e:
        logger.error(f"Stage '{name}' failed: {e}", exc_info=True)
        diagnostics.append(f"{name} failed: {e}")
        return default


def _default_segmentation(fields: List[FieldRecord]) -> SegmentationResult:
    section = Section(index=0, name=DEFAULT_SECTION_NAME, top=0.0, bottom=0.0, origin=SectionOrigin.DEFAULT)
    return SegmentationResult(
        sections=[section],
        fields=[replace(f, section_index=0) for f in fields]
    )


def run_detection_pass(
    tree: Any,
    table: PatternTable,
    thresholds: Optional[DetectionThresholds] = None,
    page_title: str = "",
    builder: Optional[ElementModelBuilder] = None,
    time_budget: Optional[float] = None,
    clock: Callable[[], float] = time.monotonic
) -> DetectionReport:
    """
    Run stages BUILDING_CONTROLS through SUMMARIZING over one element tree.

    Args:
        tree: Serialized element tree (dict), parsed root node or DocumentIndex
        table: Effective pattern table for the page's region
        thresholds: Tunable constants (defaults if omitted)
        page_title: Document title, used for default section naming
        builder: Element model builder (carries geometry provider and caps)
        time_budget: Wall-clock bound in seconds for the whole pass
        clock: Monotonic clock, injectable for tests

    Returns:
        DetectionReport; never raises
    """
    thresholds = thresholds or DetectionThresholds()
    builder = builder or ElementModelBuilder()
    budget = time_budget if time_budget is not None else Config.PASS_TIME_BUDGET_SECONDS

    started = clock()
    deadline = started + budget
    tracker = StageTracker()
    diagnostics: List[str] = list(table.diagnostics)
    incomplete = False
    fields: List[FieldRecord] = []
    sections: List[Section] = []

    def over_budget() -> bool:
        return clock() > deadline

    def check_budget(stage: PassStage):
        if over_budget():
            raise TimeoutAborted(stage.value, f"time budget of {budget}s exceeded")

    try:
        # === STAGE: BUILDING_CONTROLS ===
        tracker.advance(PassStage.BUILDING_CONTROLS)
        model = _run_stage(
            'building_controls',
            lambda: builder.build(tree, page_title=page_title, should_stop=over_budget),
            None,
            diagnostics
        )
        if model is None:
            model = ElementModel(fields=(), page_title=clean_text(page_title))
        fields = list(model.fields)
        diagnostics.extend(model.diagnostics)
        if model.truncated:
            incomplete = True
        check_budget(PassStage.BUILDING_CONTROLS)

        # === STAGE: SEGMENTING ===
        tracker.advance(PassStage.SEGMENTING)
        segmenter = SectionSegmenter(thresholds)
        segmentation = _run_stage(
            'segmenting',
            lambda: segmenter.segment(model),
            None,
            diagnostics
        )
        if segmentation is None:
            segmentation = _default_segmentation(fields)
        fields = segmentation.fields
        sections = segmentation.sections
        diagnostics.extend(segmentation.diagnostics)
        check_budget(PassStage.SEGMENTING)

        # === STAGE: CLASSIFYING ===
        tracker.advance(PassStage.CLASSIFYING)
        classifier = FieldClassifier(table, thresholds)
        fields = _run_stage(
            'classifying',
            lambda: classifier.classify_all(fields),
            fields,
            diagnostics
        )
        check_budget(PassStage.CLASSIFYING)

    except TimeoutAborted as e:
        logger.warning(f"Detection pass aborted: {e}")
        diagnostics.append(str(e))
        incomplete = True
        if fields and not sections:
            segmentation = _default_segmentation(fields)
            fields, sections = segmentation.fields, segmentation.sections

    # === STAGE: SUMMARIZING ===
    tracker.advance(PassStage.SUMMARIZING)
    evaluator = ReadinessEvaluator(thresholds)
    summary = evaluator.evaluate(fields, table, incomplete=incomplete, diagnostics=diagnostics)
    tracker.advance(PassStage.READY if summary.ready else PassStage.NEEDS_IMPROVEMENT)

    elapsed_ms = int((clock() - started) * 1000)
    logger.info(
        f"Detection pass finished in {elapsed_ms}ms: {len(fields)} fields, "
        f"{len(sections)} sections, stage={tracker.stage.value}"
        + (" (incomplete)" if incomplete else "")
    )

    return DetectionReport(
        summary=summary,
        sections=tuple(sections),
        fields=tuple(fields),
        region=table.region.upper() if table.region else None,
        stage=tracker.stage,
        stage_trail=tuple(tracker.trail),
        elapsed_ms=elapsed_ms
    )


class DetectionPipeline:
    """
    Detection pass with region identification and pattern lookup in front.

    Example usage:

        pipeline = DetectionPipeline()
        report = pipeline.run(PageSnapshot(
            tree=tree_dict,
            address="https://bizfileonline.sos.ca.gov/registration",
            title="Register a Business"
        ))
        print(report.summary.readiness_score)
        print(report.to_dict())
    """

    def __init__(
        self,
        store: Optional[PatternStore] = None,
        identifier: Optional[RegionIdentifier] = None,
        thresholds: Optional[DetectionThresholds] = None,
        geometry_provider: Optional[GeometryProvider] = None,
        time_budget: Optional[float] = None
    ):
        """
        Args:
            store: Pattern store (packaged knowledge documents by default)
            identifier: Region identifier (module singleton by default)
            thresholds: Tunable constants (from Config by default)
            geometry_provider: Host callback for missing element rects
            time_budget: Wall-clock bound per pass in seconds
        """
        self.store = store or PatternStore(PackagedPatternSource(Config.KNOWLEDGE_DIR))
        self.identifier = identifier or REGION_IDENTIFIER
        self.thresholds = thresholds or Config.get_thresholds()
        self.builder = ElementModelBuilder(geometry_provider=geometry_provider)
        self.time_budget = time_budget if time_budget is not None else Config.PASS_TIME_BUDGET_SECONDS

    def run(self, snapshot: PageSnapshot) -> DetectionReport:
        """Run a full detection pass for one page snapshot. Never raises."""
        tree: Any = snapshot.tree
        heading_text = snapshot.heading_text
        try:
            tree = DocumentIndex.from_dict(snapshot.tree)
            if not heading_text:
                heading_text = self.page_headings(tree)
        except Exception as e:
            # The building stage reports the malformed tree
            logger.warning(f"Could not parse element tree: {e}")

        heading_text = ' '.join(t for t in (snapshot.title, heading_text) if t)
        region = self.identifier.identify(snapshot.address, heading_text)
        table = self.store.get_effective_patterns(region)
        logger.info(f"Detection pass for {snapshot.address or '<no address>'}: region={region}")

        report = run_detection_pass(
            tree,
            table,
            thresholds=self.thresholds,
            page_title=snapshot.title,
            builder=self.builder,
            time_budget=self.time_budget
        )
        return replace(
            report,
            region=region,
            assessment=self.identifier.assess_page(snapshot.address)
        )

    @staticmethod
    def page_headings(index: DocumentIndex) -> str:
        """Text of the title, top-level headings and banner, in document order."""
        texts = []
        for node in index.nodes:
            if node.tag in REGION_HEADING_TAGS:
                text = node.text_content()
                if text:
                    texts.append(text)
        return ' '.join(texts)
