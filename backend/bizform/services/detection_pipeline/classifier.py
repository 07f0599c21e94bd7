"""
Field Classifier
================

Assigns each field record a semantic category and an integer confidence
(0-100) using the merged pattern table. Deterministic: the same records and
table always produce the same classifications.

Tiers (first that applies wins):
--------------------------------
1. SPECIAL RULES, which short-circuit scoring:
   - a boolean control with agreement vocabulary -> certifications
   - a two-option yes/no group -> boolean_field
   - a selection naming legal entity forms -> entity_type
   - a selection listing jurisdictions -> state
2. PATTERN SCORE per category:
       (label pattern + keyword hits) * 40 + attribute hits * 20
       + 5 per extra hit (max 20) + type bonus, all * priority / 100
   The best category wins if it reaches the acceptance threshold.
3. DOMAIN FALLBACK: registration vocabulary in label/name/id -> a generic
   category keyed by control kind (email, phone, date_field, ...).
4. UNCLASSIFIED (confidence 0).

Confidence:
-----------
    min(score, 100) + exact match + required + explicit label [+ region]
clamped to [0, 100]. Special rules start from a fixed base instead of a score.
"""

import logging
import re
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Sequence, Tuple

from bizform.config import DetectionThresholds

from .knowledge import PatternRule, PatternTable
from .records import (
    Classification, ClassificationMethod, FieldRecord, FieldType, LabelSource,
    UNCLASSIFIED_CATEGORY
)
from .region import REGION_IDENTIFIER

logger = logging.getLogger(__name__)


CONSENT_RE = re.compile(
    r'\b(certif(y|ies|ication)|agree|consent|acknowledge\w*|attest\w*|affirm\w*|confirm\w*|declare)\b',
    re.IGNORECASE
)
YES_NO_WORDS = {'yes', 'no', 'true', 'false', 'y', 'n'}
ENTITY_OPTION_RE = re.compile(
    r'\b(llc|l\.l\.c\.?|corporation|corp\.?|inc\.?|incorporated|partnership|llp|'
    r'sole\s*proprietor(ship)?|limited|non-?profit|cooperative|professional\s*corporation)(?!\w)',
    re.IGNORECASE
)
ENTITY_LABEL_RE = re.compile(
    r'\b(entity|business|organization|company)\s*(type|structure)\b|\btype\s*of\s*(business|entity|organization|company)\b'
    r'|\blegal\s*structure\b',
    re.IGNORECASE
)
STATE_LABEL_RE = re.compile(r'^\s*(state|jurisdiction|state\s*of\s*(formation|incorporation|organization|domicile))\s*$', re.IGNORECASE)
PLACEHOLDER_OPTION_RE = re.compile(r'^(-+|select\b.*|choose\b.*|please\s+select.*|--.*)$', re.IGNORECASE)
DOMAIN_VOCABULARY_RE = re.compile(
    r'\b(business|company|organization|registration|form|application|permit|license|tax|ein|ssn|fein)\b',
    re.IGNORECASE
)
TOKEN_SPLIT_RE = re.compile(r'(?<=[a-z0-9])(?=[A-Z])|[_\-.\[\]:]+')

# Minimum jurisdiction names among a selection's options for the state rule
MIN_STATE_OPTIONS = 5

DOMAIN_FALLBACK_CATEGORIES: Dict[FieldType, str] = {
    FieldType.EMAIL: 'email',
    FieldType.TEL: 'phone',
    FieldType.DATE: 'date_field',
    FieldType.NUMBER: 'number_field',
    FieldType.SELECT: 'selection_field',
    FieldType.SINGLE_SELECT: 'selection_field',
    FieldType.MULTI_SELECT: 'selection_field',
    FieldType.BOOLEAN: 'boolean_field',
    FieldType.TEXTAREA: 'text_field',
}
TYPE_ALIASES: Dict[FieldType, Tuple[str, ...]] = {
    FieldType.SELECT: ('select',),
    FieldType.SINGLE_SELECT: ('select', 'single_select', 'radio'),
    FieldType.MULTI_SELECT: ('select', 'multi_select', 'checkbox'),
    FieldType.BOOLEAN: ('boolean', 'boolean_field', 'checkbox'),
}


def normalize_text(text: str) -> str:
    """Lower-case, split camelCase/snake_case, collapse whitespace."""
    if not text:
        return ''
    text = TOKEN_SPLIT_RE.sub(' ', text)
    return ' '.join(text.lower().split())


@dataclass(frozen=True)
class MatchContext:
    """Text a field is matched against."""
    label: str            # normalized label
    attributes: str       # normalized name, id, placeholder, title, autocomplete
    options: Tuple[str, ...]
    field_type: FieldType
    required: bool
    explicit_label: bool

    @property
    def full_text(self) -> str:
        return ' '.join([self.label, self.attributes] + list(self.options))

    @classmethod
    def for_record(cls, record: FieldRecord) -> 'MatchContext':
        control = record.primary
        attributes = ' '.join(
            normalize_text(v) for v in
            (record.name, record.element_id, record.placeholder, record.title, control.autocomplete) if v
        )
        options = tuple(
            normalize_text(o.label) for o in record.options
            if o.label and not PLACEHOLDER_OPTION_RE.match(o.label.strip())
        )
        return cls(
            label=normalize_text(record.label.text),
            attributes=attributes,
            options=options,
            field_type=record.field_type,
            required=record.required,
            explicit_label=record.label.source not in (LabelSource.DERIVED, LabelSource.PLACEHOLDER)
        )


@dataclass(frozen=True)
class CategoryScore:
    category: str
    score: float
    priority: int
    hits: Tuple[str, ...]
    exact: bool
    region_specific: bool


class FieldClassifier:
    """
    Rule/pattern scoring classifier for field records.

    Example usage:

        classifier = FieldClassifier(store.get_effective_patterns('ca'))
        classified = classifier.classify_all(records)
    """

    def __init__(self, table: PatternTable, thresholds: Optional[DetectionThresholds] = None):
        self.table = table
        self.thresholds = thresholds or DetectionThresholds()
        # Attribute hints compiled once per table
        self._attribute_res: Dict[str, List[Tuple[str, re.Pattern]]] = {
            rule.category: [
                (attr, re.compile(rf'\b{re.escape(normalize_text(attr))}\b'))
                for attr in rule.attributes if normalize_text(attr)
            ]
            for rule in table
        }
        self._keyword_res: Dict[str, List[Tuple[str, re.Pattern]]] = {
            rule.category: [
                (kw, re.compile(rf'(?<!\w){re.escape(normalize_text(kw))}(?!\w)'))
                for kw in rule.keywords if normalize_text(kw)
            ]
            for rule in table
        }

    def classify_all(self, records: Sequence[FieldRecord]) -> List[FieldRecord]:
        """Return copies of the records with their classification attached."""
        return [replace(record, classification=self.classify(record)) for record in records]

    def classify(self, record: FieldRecord) -> Classification:
        """Classify a single field record."""
        context = MatchContext.for_record(record)

        special = self._special_rules(context)
        if special is not None:
            return special

        best = self.best_score(context)
        t = self.thresholds
        if best is not None and best.score >= t.acceptance_threshold:
            confidence = min(int(best.score), 100)
            if best.exact:
                confidence += t.exact_match_boost
            if best.region_specific and self.table.region:
                confidence += t.region_specific_boost
            confidence = self._boost(confidence, context)
            return Classification(
                category=best.category,
                confidence=confidence,
                method=ClassificationMethod.PATTERN_SCORE,
                trace=best.hits
            )

        if DOMAIN_VOCABULARY_RE.search(' '.join([context.label, context.attributes])):
            category = DOMAIN_FALLBACK_CATEGORIES.get(context.field_type, 'business_field')
            return Classification(
                category=category,
                confidence=t.domain_fallback_confidence,
                method=ClassificationMethod.DOMAIN_FALLBACK,
                trace=('domain vocabulary',)
            )

        reason = 'generic label, no domain signal' if context.explicit_label else 'no label or domain signal'
        return Classification(
            category=UNCLASSIFIED_CATEGORY,
            confidence=0,
            method=ClassificationMethod.UNCLASSIFIED,
            trace=(reason,)
        )

    # ========================================================================
    # Special rules
    # ========================================================================

    def _special_rules(self, context: MatchContext) -> Optional[Classification]:
        t = self.thresholds

        if context.field_type == FieldType.BOOLEAN and CONSENT_RE.search(context.label):
            return self._special('certifications', t.certification_confidence, 'agreement vocabulary', context)

        options = context.options
        if len(options) == 2 and all(o in YES_NO_WORDS for o in options) and set(options) != {options[0]}:
            return self._special('boolean_field', t.special_rule_confidence, 'yes/no options', context)

        if context.field_type.is_selection:
            entity_options = [o for o in options if ENTITY_OPTION_RE.search(o)]
            if entity_options and (len(entity_options) >= 2 or ENTITY_LABEL_RE.search(context.label)):
                return self._special('entity_type', t.special_rule_confidence, 'entity form options', context)
            if ENTITY_LABEL_RE.search(context.label):
                return self._special('entity_type', t.special_rule_confidence, 'entity type label', context)

            state_options = sum(1 for o in options if REGION_IDENTIFIER.state_code_for(o))
            if state_options >= MIN_STATE_OPTIONS or (STATE_LABEL_RE.match(context.label) and state_options):
                return self._special('state', t.special_rule_confidence, 'jurisdiction options', context)

        return None

    def _special(self, category: str, base: int, reason: str, context: MatchContext) -> Classification:
        return Classification(
            category=category,
            confidence=self._boost(base, context),
            method=ClassificationMethod.SPECIAL_RULE,
            trace=(f"special rule: {reason}",)
        )

    def _boost(self, confidence: int, context: MatchContext) -> int:
        t = self.thresholds
        if context.required:
            confidence += t.required_boost
        if context.explicit_label:
            confidence += t.explicit_label_boost
        return max(0, min(100, confidence))

    # ========================================================================
    # Generic scoring
    # ========================================================================

    def score_rule(self, rule: PatternRule, context: MatchContext) -> CategoryScore:
        """Score one category against a field's match context."""
        t = self.thresholds
        hits: List[str] = []
        score = 0.0
        exact = False

        if context.label:
            for pattern in rule.compiled:
                if pattern.search(context.label):
                    hits.append(f"pattern:{pattern.pattern}")
                    score += t.label_hit_weight
            for keyword, keyword_re in self._keyword_res.get(rule.category, []):
                if keyword_re.search(context.label):
                    hits.append(f"keyword:{keyword}")
                    score += t.label_hit_weight
                    if context.label == normalize_text(keyword):
                        exact = True

        attribute_text = ' '.join((context.attributes,) + context.options)
        if attribute_text:
            for attr, attr_re in self._attribute_res.get(rule.category, []):
                if attr_re.search(attribute_text):
                    hits.append(f"attribute:{attr}")
                    score += t.attribute_hit_weight

        if len(hits) > 1:
            score += min((len(hits) - 1) * t.multi_hit_bonus, t.multi_hit_bonus_cap)

        if hits:
            types = rule.validation.get('types') or ()
            aliases = TYPE_ALIASES.get(context.field_type, (context.field_type.value,))
            if any(a in types for a in aliases):
                score += 10 if context.field_type.is_selection else 5

        score *= rule.priority / 100
        return CategoryScore(
            category=rule.category,
            score=score,
            priority=rule.priority,
            hits=tuple(hits),
            exact=exact,
            region_specific=rule.region_specific
        )

    def best_score(self, context: MatchContext) -> Optional[CategoryScore]:
        """Highest-scoring category; ties go to higher priority, then name."""
        scores = [self.score_rule(rule, context) for rule in self.table]
        scores = [s for s in scores if s.hits]
        if not scores:
            return None
        return min(scores, key=lambda s: (-s.score, -s.priority, s.category))
