"""
Readiness / Validation Evaluator
================================

Aggregates the classified field records of one pass into a DetectionSummary
and decides whether the result is good enough to present.

Gates (all configurable through DetectionThresholds):
-----------------------------------------------------
- classification rate >= 60%
- critical categories found >= 2 (business_name, tax_identifier, entity_type)
- distinct categories >= 3
- average confidence of classified fields >= 70
- validation check pass rate >= 70%

readiness_score is the percentage of gates satisfied; ready means all of
them hold and the pass was not cut short.

Pass stages:
------------
    IDLE -> BUILDING_CONTROLS -> SEGMENTING -> CLASSIFYING -> SUMMARIZING
         -> READY | NEEDS_IMPROVEMENT

There are no internal retries. A new trigger starts a new pass from IDLE.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from bizform.config import DetectionThresholds

from .classifier import normalize_text
from .knowledge import PatternTable
from .records import ControlKind, FieldRecord

logger = logging.getLogger(__name__)


CRITICAL_CATEGORIES = ('business_name', 'tax_identifier', 'entity_type')
ADDRESS_CATEGORIES = {'city', 'state', 'zip'}

TAX_LABEL_RE = re.compile(r'\bf?ein\b|employer\s*identification', re.IGNORECASE)
ENTITY_TYPE_LABEL_RE = re.compile(r'\b(organization|entity)\s*type\b', re.IGNORECASE)
ADDRESS_LABEL_RE = re.compile(r'\b(street|address|city|state|zip)\b', re.IGNORECASE)
PASSWORD_HINT_RE = re.compile(r'password', re.IGNORECASE)


class PassStage(str, Enum):
    """Stages of a detection pass."""
    IDLE = "idle"
    BUILDING_CONTROLS = "building_controls"
    SEGMENTING = "segmenting"
    CLASSIFYING = "classifying"
    SUMMARIZING = "summarizing"
    READY = "ready"
    NEEDS_IMPROVEMENT = "needs_improvement"

    @property
    def is_terminal(self) -> bool:
        return self in (PassStage.READY, PassStage.NEEDS_IMPROVEMENT)


# Allowed transitions; an aborted pass skips ahead to SUMMARIZING
STAGE_TRANSITIONS: Dict[PassStage, Tuple[PassStage, ...]] = {
    PassStage.IDLE: (PassStage.BUILDING_CONTROLS,),
    PassStage.BUILDING_CONTROLS: (PassStage.SEGMENTING, PassStage.SUMMARIZING),
    PassStage.SEGMENTING: (PassStage.CLASSIFYING, PassStage.SUMMARIZING),
    PassStage.CLASSIFYING: (PassStage.SUMMARIZING,),
    PassStage.SUMMARIZING: (PassStage.READY, PassStage.NEEDS_IMPROVEMENT),
    PassStage.READY: (),
    PassStage.NEEDS_IMPROVEMENT: (),
}


class StageTracker:
    """Records the stage trail of one pass and rejects illegal transitions."""

    def __init__(self):
        self.stage = PassStage.IDLE
        self.trail: List[PassStage] = [PassStage.IDLE]

    def advance(self, stage: PassStage) -> PassStage:
        if stage not in STAGE_TRANSITIONS[self.stage]:
            raise ValueError(f"Illegal stage transition {self.stage.value} -> {stage.value}")
        logger.debug(f"Pass stage: {self.stage.value} -> {stage.value}")
        self.stage = stage
        self.trail.append(stage)
        return stage


@dataclass(frozen=True)
class ValidationCheck:
    """Outcome of one sanity check."""
    name: str
    passed: bool
    detail: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {'name': self.name, 'passed': self.passed, 'detail': self.detail}


@dataclass(frozen=True)
class DetectionSummary:
    """Aggregate statistics and gating outcome for one pass."""
    total: int = 0
    classified: int = 0
    unclassified: int = 0
    classification_rate: int = 0
    average_confidence: int = 0
    categories: Dict[str, int] = field(default_factory=dict, hash=False)
    critical_found: Tuple[str, ...] = ()
    checks: Tuple[ValidationCheck, ...] = ()
    validation_score: int = 0
    gates: Dict[str, bool] = field(default_factory=dict, hash=False)
    incomplete: bool = False
    low_confidence: Tuple[str, ...] = ()          # field ids
    duplicate_categories: Tuple[str, ...] = ()
    suspicious: Tuple[str, ...] = ()              # field ids
    diagnostics: Tuple[str, ...] = ()

    @property
    def readiness_score(self) -> int:
        if not self.gates:
            return 0
        return round(100 * sum(1 for passed in self.gates.values() if passed) / len(self.gates))

    @property
    def ready(self) -> bool:
        return bool(self.gates) and all(self.gates.values()) and not self.incomplete

    @property
    def category_count(self) -> int:
        return len(self.categories)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total': self.total,
            'classified': self.classified,
            'unclassified': self.unclassified,
            'classification_rate': self.classification_rate,
            'average_confidence': self.average_confidence,
            'categories': dict(self.categories),
            'critical_found': list(self.critical_found),
            'validation_checks': [c.to_dict() for c in self.checks],
            'validation_score': self.validation_score,
            'gates': dict(self.gates),
            'readiness_score': self.readiness_score,
            'ready': self.ready,
            'incomplete': self.incomplete,
            'issues': {
                'low_confidence': list(self.low_confidence),
                'duplicate_categories': list(self.duplicate_categories),
                'suspicious': list(self.suspicious)
            },
            'diagnostics': list(self.diagnostics)
        }


class ReadinessEvaluator:
    """
    Summarizes classified records and applies the readiness gates.

    Example usage:

        evaluator = ReadinessEvaluator()
        summary = evaluator.evaluate(classified_records, table)
        if summary.ready:
            ...
    """

    def __init__(self, thresholds: Optional[DetectionThresholds] = None):
        self.thresholds = thresholds or DetectionThresholds()

    def evaluate(
        self,
        fields: Sequence[FieldRecord],
        table: Optional[PatternTable] = None,
        incomplete: bool = False,
        diagnostics: Sequence[str] = ()
    ) -> DetectionSummary:
        """
        Build the summary for a set of classified field records.

        Records without a classification (a pass that stopped before
        classifying) count as unclassified.
        """
        t = self.thresholds
        total = len(fields)
        classified = [f for f in fields if f.classification and f.classification.is_classified]

        categories: Dict[str, int] = {}
        for record in classified:
            categories[record.classification.category] = categories.get(record.classification.category, 0) + 1

        classification_rate = round(100 * len(classified) / total) if total else 0
        average_confidence = (
            round(sum(f.classification.confidence for f in classified) / len(classified))
            if classified else 0
        )
        critical_found = tuple(c for c in CRITICAL_CATEGORIES if c in categories)

        checks = tuple(self.run_checks(fields, table))
        validation_score = round(100 * sum(1 for c in checks if c.passed) / len(checks)) if checks else 0

        gates = {
            'classification_rate': classification_rate >= t.min_classification_rate,
            'critical_fields': len(critical_found) >= t.min_critical_fields,
            'category_diversity': len(categories) >= t.min_categories,
            'average_confidence': average_confidence >= t.min_average_confidence,
            'validation_score': validation_score >= t.min_validation_score,
        }

        summary = DetectionSummary(
            total=total,
            classified=len(classified),
            unclassified=total - len(classified),
            classification_rate=classification_rate,
            average_confidence=average_confidence,
            categories=categories,
            critical_found=critical_found,
            checks=checks,
            validation_score=validation_score,
            gates=gates,
            incomplete=incomplete,
            low_confidence=tuple(
                f.field_id for f in classified if f.classification.confidence < t.low_confidence_threshold
            ),
            duplicate_categories=tuple(sorted(c for c, n in categories.items() if n > 1)),
            suspicious=tuple(f.field_id for f in fields if self._is_suspicious(f)),
            diagnostics=tuple(diagnostics)
        )

        logger.info(
            f"Readiness: {summary.readiness_score}% "
            f"({summary.classified}/{summary.total} classified, "
            f"avg confidence {summary.average_confidence}, validation {summary.validation_score}%)"
        )
        for name, passed in gates.items():
            if not passed:
                logger.debug(f"Readiness gate failed: {name}")
        return summary

    # ========================================================================
    # Validation checks
    # ========================================================================

    def run_checks(self, fields: Sequence[FieldRecord], table: Optional[PatternTable] = None) -> List[ValidationCheck]:
        """Run the fixed battery of sanity checks, in a fixed order."""
        return [
            self._check_business_name(fields),
            self._check_entity_type(fields),
            self._check_tax_identifier(fields),
            self._check_region_fields(fields, table),
            self._check_address(fields),
            self._check_required(fields),
        ]

    @staticmethod
    def _category(record: FieldRecord) -> Optional[str]:
        if record.classification and record.classification.is_classified:
            return record.classification.category
        return None

    def _check_business_name(self, fields: Sequence[FieldRecord]) -> ValidationCheck:
        name = "Business name field classified as business_name"
        record = next(
            (f for f in fields if 'business' in f.label.text.lower() and 'name' in f.label.text.lower()),
            None
        )
        if record is None:
            return ValidationCheck(name, False, "no business name field found")
        category = self._category(record)
        return ValidationCheck(name, category == 'business_name', f"'{record.label.text}' -> {category}")

    def _check_entity_type(self, fields: Sequence[FieldRecord]) -> ValidationCheck:
        name = "Organization type selection classified as entity_type"
        record = next(
            (f for f in fields if ENTITY_TYPE_LABEL_RE.search(f.label.text) and f.field_type.is_selection),
            None
        )
        if record is None:
            return ValidationCheck(name, True, "not present")
        category = self._category(record)
        return ValidationCheck(name, category == 'entity_type', f"'{record.label.text}' -> {category}")

    def _check_tax_identifier(self, fields: Sequence[FieldRecord]) -> ValidationCheck:
        name = "FEIN/EIN field classified as tax_identifier"
        record = next((f for f in fields if TAX_LABEL_RE.search(f.label.text)), None)
        if record is None:
            return ValidationCheck(name, True, "not present")
        category = self._category(record)
        return ValidationCheck(name, category == 'tax_identifier', f"'{record.label.text}' -> {category}")

    def _check_region_fields(self, fields: Sequence[FieldRecord], table: Optional[PatternTable]) -> ValidationCheck:
        name = "Region-specific fields recognized"
        if table is None or not table.region:
            return ValidationCheck(name, True, "no region")

        keywords = [
            normalize_text(keyword)
            for rule in table if rule.region_specific
            for keyword in rule.keywords
        ]
        region_fields = [
            f for f in fields
            if any(k and k in normalize_text(f.label.text) for k in keywords)
        ]
        if not region_fields:
            return ValidationCheck(name, True, "not present")
        missed = [f.label.text for f in region_fields if self._category(f) is None]
        return ValidationCheck(
            name,
            not missed,
            f"unclassified: {', '.join(missed)}" if missed else f"{len(region_fields)} recognized"
        )

    def _check_address(self, fields: Sequence[FieldRecord]) -> ValidationCheck:
        name = "Address fields identified"
        address_fields = [f for f in fields if ADDRESS_LABEL_RE.search(f.label.text)]
        if not address_fields:
            return ValidationCheck(name, True, "not present")
        recognized = [
            f for f in address_fields
            if (self._category(f) or '') in ADDRESS_CATEGORIES or 'address' in (self._category(f) or '')
        ]
        return ValidationCheck(name, bool(recognized), f"{len(recognized)}/{len(address_fields)} recognized")

    def _check_required(self, fields: Sequence[FieldRecord]) -> ValidationCheck:
        name = "Required fields classified"
        required = [f for f in fields if f.required]
        if not required:
            return ValidationCheck(name, True, "no required fields")
        classified = [f for f in required if self._category(f) is not None]
        ratio = len(classified) / len(required)
        return ValidationCheck(
            name,
            ratio >= self.thresholds.required_coverage_ratio,
            f"{len(classified)}/{len(required)} classified"
        )

    @staticmethod
    def _is_suspicious(record: FieldRecord) -> bool:
        if any(c.kind == ControlKind.PASSWORD for c in record.controls):
            return True
        return bool(PASSWORD_HINT_RE.search(record.name or '') or PASSWORD_HINT_RE.search(record.element_id or ''))
