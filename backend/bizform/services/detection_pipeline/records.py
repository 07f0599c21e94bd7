"""
Detection Records
=================

Immutable records passed between the detection stages:

    Control          one interactive element, as seen by the builder
    FieldRecord      a labeled control, or a group of choice controls
    HeaderCandidate  text that might start a section
    Section          a named band of the form
    Classification   category + confidence for one FieldRecord

All records are frozen. Stages produce updated copies with
``dataclasses.replace`` instead of mutating what they were given, so a
summary handed to a consumer can never change underneath it.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .geometry import BoundingBox


class LabelSource(str, Enum):
    """Where a field's label text came from, strongest first."""
    EXPLICIT = "explicit"        # <label for=...> or a wrapping <label>
    ARIA = "aria"                # aria-label / aria-labelledby
    SIBLING = "sibling"          # nearest preceding sibling text
    CONTAINER = "container"      # container text with controls stripped
    PLACEHOLDER = "placeholder"  # placeholder or title attribute
    DERIVED = "derived"          # humanized name/id


class ControlKind(str, Enum):
    """Kinds of interactive elements the builder accepts."""
    TEXT = "text"
    EMAIL = "email"
    TEL = "tel"
    NUMBER = "number"
    DATE = "date"
    URL = "url"
    TEXTAREA = "textarea"
    SELECT = "select"
    RADIO = "radio"
    CHECKBOX = "checkbox"
    PASSWORD = "password"
    FILE = "file"


class FieldType(str, Enum):
    """Types of resolved fields (control kinds plus group types)."""
    TEXT = "text"
    EMAIL = "email"
    TEL = "tel"
    NUMBER = "number"
    DATE = "date"
    URL = "url"
    TEXTAREA = "textarea"
    SELECT = "select"
    PASSWORD = "password"
    FILE = "file"
    SINGLE_SELECT = "single_select"   # radio group
    MULTI_SELECT = "multi_select"     # checkbox group
    BOOLEAN = "boolean_field"         # single checkbox / yes-no style control

    @property
    def is_selection(self) -> bool:
        return self in (FieldType.SELECT, FieldType.SINGLE_SELECT, FieldType.MULTI_SELECT)


class HeaderKind(str, Enum):
    """How a header candidate was found."""
    HEADING = "heading"        # h1-h6 or role=heading
    CAPTION = "caption"        # legend / caption
    STRUCTURAL = "structural"  # heading-like child of a section container
    STYLED = "styled"          # prominent text found by style alone


class SectionOrigin(str, Enum):
    STRUCTURAL_HEADING = "structural_heading"
    INFERRED_CLUSTER = "inferred_cluster"
    DEFAULT = "default"


class ClassificationMethod(str, Enum):
    SPECIAL_RULE = "special_rule"
    PATTERN_SCORE = "pattern_score"
    DOMAIN_FALLBACK = "domain_fallback"
    UNCLASSIFIED = "unclassified"


UNCLASSIFIED_CATEGORY = "unclassified"


@dataclass(frozen=True)
class FieldLabel:
    text: str
    source: LabelSource

    @property
    def is_derived(self) -> bool:
        return self.source == LabelSource.DERIVED


@dataclass(frozen=True)
class FieldOption:
    """One choice of a select or of a radio/checkbox group."""
    value: str
    label: str
    checked: bool = False


@dataclass(frozen=True)
class Control:
    """One raw interactive element."""
    ordinal: int                # document-order index of the element
    kind: ControlKind
    name: str = ""
    element_id: str = ""
    placeholder: str = ""
    title: str = ""
    value: str = ""
    autocomplete: str = ""
    required: bool = False
    checked: bool = False
    visible: bool = True
    bbox: Optional[BoundingBox] = None
    group_key: Optional[str] = None
    ancestors: Tuple[int, ...] = ()   # ordinals, innermost first


@dataclass(frozen=True)
class Classification:
    """Category and integer confidence (0-100) for one field."""
    category: str
    confidence: int
    method: ClassificationMethod
    trace: Tuple[str, ...] = ()

    def __post_init__(self):
        if not 0 <= self.confidence <= 100:
            raise ValueError(f"confidence out of range: {self.confidence}")

    @property
    def is_classified(self) -> bool:
        return self.category != UNCLASSIFIED_CATEGORY

    def to_dict(self) -> Dict[str, Any]:
        return {
            'category': self.category,
            'confidence': self.confidence,
            'method': self.method.value,
            'trace': list(self.trace)
        }


@dataclass(frozen=True)
class FieldRecord:
    """A resolved field: one control, or a grouped set of choice controls."""
    field_id: str
    label: FieldLabel
    field_type: FieldType
    controls: Tuple[Control, ...]
    options: Tuple[FieldOption, ...] = ()
    bbox: Optional[BoundingBox] = None
    required: bool = False
    section_index: Optional[int] = None
    classification: Optional[Classification] = None

    @property
    def primary(self) -> Control:
        return self.controls[0]

    @property
    def name(self) -> str:
        return self.primary.group_key or self.primary.name

    @property
    def element_id(self) -> str:
        return self.primary.element_id

    @property
    def placeholder(self) -> str:
        return self.primary.placeholder

    @property
    def title(self) -> str:
        return self.primary.title

    @property
    def ordinal(self) -> int:
        return self.primary.ordinal

    @property
    def ancestors(self) -> Tuple[int, ...]:
        """Ancestors shared by every member control, innermost first."""
        shared = set(self.controls[0].ancestors)
        for control in self.controls[1:]:
            shared &= set(control.ancestors)
        return tuple(a for a in self.controls[0].ancestors if a in shared)

    @property
    def top(self) -> float:
        return self.bbox.top if self.bbox else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'field_id': self.field_id,
            'label': self.label.text,
            'label_source': self.label.source.value,
            'field_type': self.field_type.value,
            'name': self.name,
            'element_id': self.element_id,
            'placeholder': self.placeholder,
            'required': self.required,
            'options': [
                {'value': o.value, 'label': o.label, 'checked': o.checked}
                for o in self.options
            ],
            'bounding_box': self.bbox.to_dict() if self.bbox else None,
            'section_index': self.section_index,
            'classification': self.classification.to_dict() if self.classification else None
        }


@dataclass(frozen=True)
class HeaderCandidate:
    """Text that may introduce a section, with the style facts used to judge it."""
    text: str
    kind: HeaderKind
    ordinal: int
    bbox: Optional[BoundingBox] = None
    container: Optional[int] = None   # ordinal of the section container it heads
    font_size: float = 0.0
    font_weight: int = 400
    spacing: float = 0.0              # vertical margin + padding
    block_level: bool = False
    class_hint: str = ""              # class/id text
    in_page_chrome: bool = False      # inside header/nav/banner landmarks
    inside_form: bool = False
    control_count: int = 0            # controls inside the candidate element


@dataclass(frozen=True)
class Section:
    """A named band of the form."""
    index: int
    name: str
    top: float
    bottom: float
    origin: SectionOrigin
    container: Optional[int] = None
    header_ordinal: Optional[int] = None

    def contains_y(self, y: float) -> bool:
        return self.top <= y < self.bottom

    def to_dict(self) -> Dict[str, Any]:
        return {
            'index': self.index,
            'name': self.name,
            'top': self.top,
            'bottom': self.bottom,
            'origin': self.origin.value
        }


@dataclass(frozen=True)
class ElementModel:
    """Everything the builder extracts from one element tree."""
    fields: Tuple[FieldRecord, ...]
    headers: Tuple[HeaderCandidate, ...] = ()
    page_title: str = ""
    form_bounds: Optional[BoundingBox] = None
    body_font_size: float = 16.0
    controls_seen: int = 0
    truncated: bool = False
    has_password: bool = False
    diagnostics: Tuple[str, ...] = ()

    def field_ids(self) -> List[str]:
        return [f.field_id for f in self.fields]
