"""
Section Segmenter
=================

Splits a form into named sections and assigns every field record to at
most one of them.

Strategy:
---------
1. CANDIDATES: headings, captions and structural container headings are
   always candidates; other text becomes a candidate when its visual
   prominence score (size, weight, spacing, block layout, header-like
   class names) reaches the configured threshold.
2. VALIDITY: a candidate is a real section header only if at least two
   distinct field records follow it within the look-ahead distance, or its
   container holds at least two. Per-field captions fail this test.
3. BANDS: each accepted header owns the band from its bottom edge to the
   next accepted header's top edge (the last one runs to the form's end).
4. FALLBACK: with no accepted header, fields are clustered on large
   vertical gaps; with no usable clusters, one default section covers
   the form.
5. ASSIGNMENT: structural containment beats geometry. Fields outside every
   section (no geometry, or above the first header) go to a trailing
   catch-all section.

Tradeoffs:
----------
- Prominence weights are empirical and live in DetectionThresholds.
- Page-chrome text near the top of the page (site banners, agency names)
  is ignored unless it sits inside the form.
"""

import logging
import re
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Tuple

from bizform.config import DetectionThresholds

from .records import (
    ElementModel, FieldRecord, HeaderCandidate, HeaderKind, Section, SectionOrigin
)

logger = logging.getLogger(__name__)


SINGLE_FIELD_WORDS = {
    'email', 'phone', 'fax', 'name', 'address', 'city', 'state', 'zip',
    'ein', 'ssn', 'dba', 'yes', 'no', 'date', 'amount', 'number'
}
DEFINITE_FIELD_PATTERNS = [
    re.compile(r'^(enter|type|select|choose)\s+your?\s+', re.IGNORECASE),
    re.compile(r'^\w+\s*\*$'),
    re.compile(r'^(required|optional)$', re.IGNORECASE),
    re.compile(r'^(yes|no|y/n)$', re.IGNORECASE),
    re.compile(r'^\d+\.?\s*$'),
]
FIELD_GROUP_PATTERNS = [
    re.compile(r'^(id|identification)\s+type$', re.IGNORECASE),
    re.compile(r'^(entity|business|organization|company)\s+type$', re.IGNORECASE),
    re.compile(r'^(account|user|member)\s+type$', re.IGNORECASE),
    re.compile(r'^type\s+of\s+', re.IGNORECASE),
    re.compile(r'^select\s+(your\s+)?type$', re.IGNORECASE),
    re.compile(r'^(choose|select|pick)\s+(one|an?\s+option|from)$', re.IGNORECASE),
    re.compile(r'^(payment|delivery|shipping)\s+(method|option)s?$', re.IGNORECASE),
    re.compile(r'^(contact|notification)\s+preference$', re.IGNORECASE),
    re.compile(r'\?$'),
    re.compile(r'^(do|does|is|are|have|has|will|would|should|can|could)\s+', re.IGNORECASE),
    re.compile(r'^(gender|sex|title|prefix|suffix)$', re.IGNORECASE),
]
HEADER_HINT_RE = re.compile(r'(header|heading|title|section|group)')
CHROME_HINT_RE = re.compile(r'(page-header|site-header|\bnav|brand)')
REGISTRATION_TITLE_RE = re.compile(r'\b(business\s+)?registration\b|\bregister\s+(a\s+|your\s+)?business\b', re.IGNORECASE)

# Section names inferred from the vocabulary of a cluster's labels
INFERRED_NAMES: List[Tuple[str, re.Pattern]] = [
    ("Business Information", re.compile(r'\b(business|company|entity|dba|trade|organization|corporate)\b', re.IGNORECASE)),
    ("Address Information", re.compile(r'\b(address|street|city|zip|postal|county|suite)\b', re.IGNORECASE)),
    ("Contact Information", re.compile(r'\b(e-?mail|phone|telephone|fax|contact|website)\b', re.IGNORECASE)),
    ("Tax Information", re.compile(r'\b(tax|ein|fein|ssn|tin|naics)\b', re.IGNORECASE)),
    ("Ownership Information", re.compile(r'\b(owner|member|officer|principal|partner|manager|agent)s?\b', re.IGNORECASE)),
    ("Payment Information", re.compile(r'\b(payment|card|fee|billing|amount)\b', re.IGNORECASE)),
    ("Certification", re.compile(r'\b(certif\w*|agree|attest|acknowledge\w*|signature|consent)\b', re.IGNORECASE)),
]

DEFAULT_SECTION_NAME = "Form Fields"
REGISTRATION_SECTION_NAME = "Business Registration"
CATCH_ALL_SECTION_NAME = "Other Fields"


def is_definitely_field_label(text: str) -> bool:
    """True for text that labels a single field rather than a section."""
    trimmed = text.strip().lower()
    if trimmed in SINGLE_FIELD_WORDS:
        return True
    if (trimmed.endswith(':') or trimmed.endswith('*')) and len(trimmed) < 20:
        return True
    return any(p.search(trimmed) for p in DEFINITE_FIELD_PATTERNS)


def looks_like_field_group_label(text: str) -> bool:
    """True for text that labels one choice group ("Entity Type", "Do you ...?")."""
    trimmed = text.strip()
    return any(p.search(trimmed) for p in FIELD_GROUP_PATTERNS)


@dataclass
class SegmentationResult:
    """Sections in page order and the records with section_index filled in."""
    sections: List[Section] = field(default_factory=list)
    fields: List[FieldRecord] = field(default_factory=list)
    diagnostics: List[str] = field(default_factory=list)

    def fields_in(self, section: Section) -> List[FieldRecord]:
        return [f for f in self.fields if f.section_index == section.index]


class SectionSegmenter:
    """
    Detects sections and assigns fields to them.

    Example usage:

        segmenter = SectionSegmenter()
        result = segmenter.segment(model)
        for section in result.sections:
            print(section.name, len(result.fields_in(section)))
    """

    # Tolerance for fields whose top edge sits a few pixels above the header's bottom
    OVERLAP_TOLERANCE_PX = 5.0

    def __init__(self, thresholds: Optional[DetectionThresholds] = None):
        self.thresholds = thresholds or DetectionThresholds()

    def segment(self, model: ElementModel) -> SegmentationResult:
        """Segment the element model into sections."""
        fields = list(model.fields)
        result = SegmentationResult()
        if not fields:
            return result

        candidates = [h for h in model.headers if self.is_candidate(h, model.body_font_size)]
        accepted = [h for h in candidates if self.is_valid_header(h, fields, model)]
        accepted = self._dedupe(accepted)

        if accepted:
            sections = self.header_bands(accepted, fields, model)
        else:
            sections = self._cluster_sections(fields)
            if sections:
                result.diagnostics.append(f"No section headers accepted; inferred {len(sections)} sections from layout")

        if not sections:
            section = Section(
                index=0,
                name=self._default_name(model),
                top=model.form_bounds.top if model.form_bounds else 0.0,
                bottom=model.form_bounds.bottom if model.form_bounds else 0.0,
                origin=SectionOrigin.DEFAULT
            )
            result.sections = [section]
            result.fields = [replace(f, section_index=0) for f in fields]
            return result

        assignments = {f.field_id: self.assign(f, sections) for f in fields}

        # Drop sections nobody landed in and renumber in page order
        used = [s for s in sections if any(a == s.index for a in assignments.values())]
        renumber = {s.index: i for i, s in enumerate(used)}
        final_sections = [replace(s, index=renumber[s.index]) for s in used]

        unassigned = [f for f in fields if assignments[f.field_id] is None]
        if unassigned:
            final_sections.append(Section(
                index=len(final_sections),
                name=CATCH_ALL_SECTION_NAME,
                top=0.0,
                bottom=0.0,
                origin=SectionOrigin.DEFAULT
            ))

        catch_all_index = len(final_sections) - 1
        result.fields = [
            replace(
                f,
                section_index=renumber[assignments[f.field_id]]
                if assignments[f.field_id] is not None else catch_all_index
            )
            for f in fields
        ]
        result.sections = final_sections

        logger.info(
            f"Segmented {len(fields)} fields into {len(final_sections)} sections "
            f"({len(unassigned)} in catch-all)"
        )
        return result

    # ========================================================================
    # Candidates
    # ========================================================================

    def prominence_score(self, header: HeaderCandidate, body_font_size: float) -> int:
        """Visual prominence of a piece of text relative to body text."""
        t = self.thresholds
        score = 0
        if header.font_size and body_font_size and header.font_size > body_font_size * t.font_size_ratio:
            score += 2
        if header.font_weight > t.bold_font_weight:
            score += 2
        if header.spacing > t.spacing_px:
            score += 1
        if header.block_level:
            score += 1
        if HEADER_HINT_RE.search(header.class_hint) and not CHROME_HINT_RE.search(header.class_hint):
            score += 2
        return score

    def is_candidate(self, header: HeaderCandidate, body_font_size: float) -> bool:
        if header.kind in (HeaderKind.HEADING, HeaderKind.CAPTION, HeaderKind.STRUCTURAL):
            return True
        return self.prominence_score(header, body_font_size) >= self.thresholds.prominence_threshold

    def is_valid_header(self, header: HeaderCandidate, fields: List[FieldRecord], model: ElementModel) -> bool:
        """Accept a candidate only if it introduces at least two distinct fields."""
        t = self.thresholds
        text = header.text.strip()
        if len(text) < 3:
            return False
        if is_definitely_field_label(text) or looks_like_field_group_label(text):
            return False
        if header.in_page_chrome and not header.inside_form:
            return False
        if header.bbox is not None and header.bbox.top < t.page_chrome_top_px \
                and not header.inside_form and header.container is None:
            return False

        if header.container is not None:
            contained = [f for f in fields if header.container in f.ancestors]
            if len(contained) >= t.min_fields_per_section:
                return True

        if header.bbox is None:
            return False

        following = [
            f for f in fields
            if f.bbox is not None
            and f.bbox.top >= header.bbox.bottom - self.OVERLAP_TOLERANCE_PX
            and f.bbox.top - header.bbox.bottom <= t.header_lookahead_px
        ]
        if len(following) < t.min_fields_per_section:
            return False
        nearest_gap = min(f.bbox.top - header.bbox.bottom for f in following)
        return nearest_gap <= t.max_header_gap_px

    @staticmethod
    def _dedupe(headers: List[HeaderCandidate]) -> List[HeaderCandidate]:
        """One header per container; the first in document order wins."""
        seen = set()
        unique = []
        for header in sorted(headers, key=lambda h: h.ordinal):
            if header.container is not None:
                if header.container in seen:
                    continue
                seen.add(header.container)
            unique.append(header)
        return unique

    # ========================================================================
    # Sections
    # ========================================================================

    def header_bands(
        self,
        headers: List[HeaderCandidate],
        fields: List[FieldRecord],
        model: ElementModel
    ) -> List[Section]:
        """One band per accepted header, from its bottom edge to the next header's top."""
        def _top(header: HeaderCandidate) -> Optional[float]:
            if header.bbox is not None:
                return header.bbox.top
            tops = [f.bbox.top for f in fields if f.bbox is not None and header.container in f.ancestors]
            return min(tops) if tops else None

        ordered = sorted(headers, key=lambda h: (_top(h) is None, _top(h) or 0.0, h.ordinal))
        form_end = self._form_end(fields, model)

        sections = []
        for i, header in enumerate(ordered):
            top = _top(header)
            if top is None:
                band_top = band_bottom = 0.0
            else:
                band_top = header.bbox.bottom if header.bbox is not None else top
                next_tops = [_top(h) for h in ordered[i + 1:] if _top(h) is not None]
                band_bottom = next_tops[0] if next_tops else max(form_end, band_top) + 1.0
            sections.append(Section(
                index=i,
                name=header.text,
                top=band_top,
                bottom=band_bottom,
                origin=SectionOrigin.STRUCTURAL_HEADING,
                container=header.container,
                header_ordinal=header.ordinal
            ))
        return sections

    def _cluster_sections(self, fields: List[FieldRecord]) -> List[Section]:
        """Infer sections from vertical gaps between geometry-bearing fields."""
        t = self.thresholds
        placed = sorted((f for f in fields if f.bbox is not None), key=lambda f: (f.bbox.top, f.ordinal))
        if len(placed) < t.min_fields_for_clustering:
            return []

        clusters: List[List[FieldRecord]] = [[placed[0]]]
        for previous, current in zip(placed, placed[1:]):
            if current.bbox.top - previous.bbox.bottom > t.cluster_gap_px:
                clusters.append([])
            clusters[-1].append(current)

        clusters = [c for c in clusters if len(c) >= t.min_cluster_size]
        if len(clusters) < 2:
            return []

        sections = []
        for i, cluster in enumerate(clusters):
            top = min(f.bbox.top for f in cluster) - t.cluster_padding_px
            bottom = max(f.bbox.bottom for f in cluster) + t.cluster_padding_px
            sections.append(Section(
                index=i,
                name=self.infer_name(cluster, i),
                top=top,
                bottom=bottom,
                origin=SectionOrigin.INFERRED_CLUSTER
            ))
        return sections

    @staticmethod
    def infer_name(cluster: List[FieldRecord], position: int) -> str:
        """Name a cluster after the vocabulary most of its labels share."""
        counts: Dict[str, int] = {}
        for record in cluster:
            text = f"{record.label.text} {record.name}"
            for name, pattern in INFERRED_NAMES:
                if pattern.search(text):
                    counts[name] = counts.get(name, 0) + 1
        if not counts:
            return f"Section {position + 1}"
        order = [name for name, _ in INFERRED_NAMES]
        return max(counts, key=lambda name: (counts[name], -order.index(name)))

    @staticmethod
    def _default_name(model: ElementModel) -> str:
        if REGISTRATION_TITLE_RE.search(model.page_title or ''):
            return REGISTRATION_SECTION_NAME
        return DEFAULT_SECTION_NAME

    @staticmethod
    def _form_end(fields: List[FieldRecord], model: ElementModel) -> float:
        bottoms = [f.bbox.bottom for f in fields if f.bbox is not None]
        if model.form_bounds is not None:
            bottoms.append(model.form_bounds.bottom)
        return max(bottoms) if bottoms else 0.0

    # ========================================================================
    # Assignment
    # ========================================================================

    @staticmethod
    def assign(record: FieldRecord, sections: List[Section]) -> Optional[int]:
        """
        Pick the section for one field.

        Structural containment wins (innermost container first); otherwise
        the band containing the field's top edge. Returns None when neither
        applies.
        """
        by_container = {s.container: s for s in sections if s.container is not None}
        for ancestor in record.ancestors:
            if ancestor in by_container:
                return by_container[ancestor].index

        if record.bbox is None:
            return None
        for section in sections:
            if section.contains_y(record.bbox.top):
                return section.index
        return None
