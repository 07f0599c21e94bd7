"""
Business Registration Form Detection Pipeline
=============================================

Detects the fillable fields of a government business-registration page and
classifies each one with a semantic category and a 0-100 confidence.

Pipeline Stages:
1. REGION: jurisdiction from the page address, then its headings
2. KNOWLEDGE: common pattern table merged with the region override
3. BUILDING_CONTROLS: element tree -> labelled, grouped field records
4. SEGMENTING: header bands, layout clusters or one default section
5. CLASSIFYING: special rules, pattern scoring, domain fallback
6. SUMMARIZING: statistics, validation checks, readiness gates

Design Principles:
- Deterministic rule/pattern scoring (same page + table = same output)
- Override knowledge adds coverage, never removes it
- Bounded passes: time and size caps yield a flagged partial summary
- No stage failure escapes a pass
"""

from .classifier import FieldClassifier
from .element_model import ElementModelBuilder
from .errors import (
    DataLoadError,
    DetectionError,
    GeometryUnavailable,
    PatternCompileError,
    TimeoutAborted
)
from .knowledge import (
    InMemoryPatternSource,
    PackagedPatternSource,
    PatternCache,
    PatternRule,
    PatternSource,
    PatternStore,
    PatternTable,
    merge_tables
)
from .pipeline import DetectionPipeline, DetectionReport, PageSnapshot, run_detection_pass
from .readiness import DetectionSummary, PassStage, ReadinessEvaluator
from .records import Classification, FieldRecord, FieldType, Section
from .region import REGION_IDENTIFIER, PageAssessment, RegionIdentifier
from .sections import SectionSegmenter

__all__ = [
    'DetectionPipeline',
    'DetectionReport',
    'PageSnapshot',
    'run_detection_pass',
    # Knowledge
    'PatternStore',
    'PatternSource',
    'PackagedPatternSource',
    'InMemoryPatternSource',
    'PatternCache',
    'PatternRule',
    'PatternTable',
    'merge_tables',
    # Stages
    'RegionIdentifier',
    'REGION_IDENTIFIER',
    'PageAssessment',
    'ElementModelBuilder',
    'SectionSegmenter',
    'FieldClassifier',
    'ReadinessEvaluator',
    'DetectionSummary',
    'PassStage',
    # Records
    'FieldRecord',
    'FieldType',
    'Classification',
    'Section',
    # Errors
    'DetectionError',
    'DataLoadError',
    'PatternCompileError',
    'GeometryUnavailable',
    'TimeoutAborted',
]
