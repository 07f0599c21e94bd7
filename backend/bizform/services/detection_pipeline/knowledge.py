"""
Pattern Knowledge Store
=======================

Loads the category -> rule table used by the field classifier and layers a
jurisdiction-specific override on top of the common table.

Document shape (both common and region documents):

    {
      "business_name": {
        "patterns":   ["business\\s*name", ...],   # regular expressions
        "keywords":   ["business name", ...],      # plain phrases
        "attributes": ["business", ...],           # name/id hints
        "priority":   90,                          # 0-100 weight
        "validation": {"types": ["text"]}          # optional constraints
      },
      ...
    }

Keys starting with an underscore (``_meta``) are document metadata and are
not categories.

Merge Rules:
------------
- Override patterns, keywords and attributes are UNIONED with the common
  entries (common order first, duplicates removed). An override can add
  coverage but never delete it.
- An explicit override priority takes precedence; validation keys are merged.
- Categories only present in the override are added as-is.

Failure Policy:
---------------
- Missing or corrupt common document -> built-in DEFAULT table (logged)
- Missing or corrupt region document -> no override (logged)
- Invalid regex -> that pattern is skipped, a diagnostic is recorded
- The store never raises to its callers
"""

import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Pattern, Tuple

from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import DataLoadError, PatternCompileError

logger = logging.getLogger(__name__)

REGION_CODE_RE = re.compile(r'^[a-z]{2}$')
DEFAULT_PRIORITY = 50

# Built-in minimal table used when the common document cannot be loaded
DEFAULT_PATTERN_DOCUMENT: Dict[str, Dict[str, Any]] = {
    'business_name': {
        'patterns': [r'business\s*name', r'company\s*name', r'entity\s*name', r'legal\s*name'],
        'keywords': ['business name', 'company name', 'entity name', 'legal name', 'dba'],
        'attributes': ['business', 'company', 'entity'],
        'priority': 90
    },
    'tax_identifier': {
        'patterns': [r'\bf?ein\b', r'employer\s*identification', r'federal\s*tax\s*id'],
        'keywords': ['ein', 'fein', 'employer identification number', 'tax id'],
        'attributes': ['ein', 'fein', 'tin'],
        'priority': 95
    },
}


def normalize_region_code(code: Optional[str]) -> Optional[str]:
    """Lower-case a region code, returning None for anything that is not two letters."""
    if not code or not isinstance(code, str):
        return None
    code = code.strip().lower()
    return code if REGION_CODE_RE.match(code) else None


def _unique(values: List[str]) -> Tuple[str, ...]:
    """Order-preserving de-duplication."""
    seen = set()
    result = []
    for value in values:
        if value not in seen:
            seen.add(value)
            result.append(value)
    return tuple(result)


# ============================================================================
# Document schema
# ============================================================================

class PatternRuleDocument(BaseModel):
    """Schema of one category entry in a pattern document."""
    patterns: List[str] = Field(default_factory=list)
    keywords: List[str] = Field(default_factory=list)
    attributes: List[str] = Field(default_factory=list)
    priority: Optional[int] = Field(None, ge=0, le=100)
    validation: Optional[Dict[str, Any]] = None

    @field_validator('patterns', 'keywords', 'attributes', mode='before')
    @classmethod
    def _coerce_list(cls, value):
        # null lists are treated as empty; non-string members are dropped
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        if isinstance(value, (list, tuple)):
            return [v for v in value if isinstance(v, str) and v.strip()]
        return []


# ============================================================================
# Rules and tables
# ============================================================================

@dataclass(frozen=True)
class PatternRule:
    """Matching rule for one semantic category."""
    category: str
    patterns: Tuple[str, ...] = ()
    keywords: Tuple[str, ...] = ()
    attributes: Tuple[str, ...] = ()
    priority: int = 50
    validation: Dict[str, Any] = field(default_factory=dict, hash=False)
    compiled: Tuple[Pattern, ...] = field(default=(), repr=False, compare=False, hash=False)
    region_specific: bool = False
    explicit_priority: bool = field(default=True, compare=False)

    @classmethod
    def from_document(
        cls,
        category: str,
        doc: PatternRuleDocument,
        region_specific: bool = False
    ) -> Tuple['PatternRule', List[str]]:
        """
        Build a rule from its validated document.

        Returns:
            Tuple of (rule, diagnostics). Malformed patterns are left out of
            the rule and reported in the diagnostics.
        """
        compiled, kept, diagnostics = compile_patterns(category, doc.patterns)
        rule = cls(
            category=category,
            patterns=kept,
            keywords=_unique([k.strip().lower() for k in doc.keywords]),
            attributes=_unique([a.strip().lower() for a in doc.attributes]),
            priority=doc.priority if doc.priority is not None else DEFAULT_PRIORITY,
            validation=dict(doc.validation or {}),
            compiled=compiled,
            region_specific=region_specific,
            explicit_priority=doc.priority is not None
        )
        return rule, diagnostics

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            'patterns': list(self.patterns),
            'keywords': list(self.keywords),
            'attributes': list(self.attributes),
            'priority': self.priority,
        }
        if self.validation:
            result['validation'] = dict(self.validation)
        return result


def compile_patterns(
    category: str,
    patterns: List[str]
) -> Tuple[Tuple[Pattern, ...], Tuple[str, ...], List[str]]:
    """Compile pattern strings case-insensitively, skipping the ones that fail."""
    compiled = []
    kept = []
    diagnostics = []
    for pattern in _unique(patterns):
        try:
            try:
                compiled.append(re.compile(pattern, re.IGNORECASE))
            except re.error as e:
                raise PatternCompileError(category, pattern, str(e))
            kept.append(pattern)
        except PatternCompileError as e:
            logger.warning(str(e))
            diagnostics.append(str(e))
    return tuple(compiled), tuple(kept), diagnostics


@dataclass(frozen=True)
class PatternTable:
    """
    Category -> PatternRule mapping.

    Categories are unique by construction (dictionary keys). Tables are never
    mutated after they are built; merging produces a new table.
    """
    rules: Dict[str, PatternRule] = field(default_factory=dict)
    region: Optional[str] = None
    diagnostics: Tuple[str, ...] = ()

    @property
    def categories(self) -> List[str]:
        return list(self.rules.keys())

    def get(self, category: str) -> Optional[PatternRule]:
        return self.rules.get(category)

    def __contains__(self, category: str) -> bool:
        return category in self.rules

    def __iter__(self) -> Iterator[PatternRule]:
        return iter(self.rules.values())

    def __len__(self) -> int:
        return len(self.rules)

    def to_dict(self) -> Dict[str, Any]:
        return {category: rule.to_dict() for category, rule in self.rules.items()}

    @classmethod
    def from_document(
        cls,
        document: Mapping[str, Any],
        region: Optional[str] = None,
        region_specific: bool = False
    ) -> 'PatternTable':
        """
        Build a table from a raw pattern document.

        Entries that fail schema validation are skipped individually with a
        diagnostic; the rest of the table is still built.
        """
        if not isinstance(document, Mapping):
            raise DataLoadError(f"Pattern document must be an object, got {type(document).__name__}")

        rules: Dict[str, PatternRule] = {}
        diagnostics: List[str] = []

        for category, entry in document.items():
            if not isinstance(category, str) or category.startswith('_'):
                continue
            category = category.strip().lower()
            if not isinstance(entry, Mapping):
                diagnostics.append(f"Skipped '{category}': entry is not an object")
                continue
            try:
                doc = PatternRuleDocument.model_validate(dict(entry))
            except ValidationError as e:
                message = f"Skipped '{category}': {e.errors()[0].get('msg', 'invalid entry')}"
                logger.warning(message)
                diagnostics.append(message)
                continue

            rule, rule_diagnostics = PatternRule.from_document(category, doc, region_specific)
            diagnostics.extend(rule_diagnostics)
            rules[category] = rule

        return cls(rules=rules, region=region, diagnostics=tuple(diagnostics))


def merge_rules(common: PatternRule, override: PatternRule) -> PatternRule:
    """Union the override rule into the common rule for the same category."""
    patterns = _unique(list(common.patterns) + list(override.patterns))
    compiled_by_pattern = {p.pattern: p for p in common.compiled + override.compiled}
    return PatternRule(
        category=common.category,
        patterns=patterns,
        keywords=_unique(list(common.keywords) + list(override.keywords)),
        attributes=_unique(list(common.attributes) + list(override.attributes)),
        priority=override.priority if override.explicit_priority else common.priority,
        validation={**common.validation, **override.validation},
        compiled=tuple(compiled_by_pattern[p] for p in patterns if p in compiled_by_pattern),
        region_specific=True
    )


def merge_tables(common: PatternTable, override: Optional[PatternTable]) -> PatternTable:
    """
    Merge a region override into the common table.

    The merged categories are always a superset of the common categories.
    """
    if override is None:
        return common

    rules: Dict[str, PatternRule] = {}
    for category, rule in common.rules.items():
        override_rule = override.rules.get(category)
        rules[category] = merge_rules(rule, override_rule) if override_rule else rule

    for category, rule in override.rules.items():
        if category not in rules:
            rules[category] = rule

    return PatternTable(
        rules=rules,
        region=override.region,
        diagnostics=common.diagnostics + override.diagnostics
    )


DEFAULT_TABLE = PatternTable.from_document(DEFAULT_PATTERN_DOCUMENT)


# ============================================================================
# Sources
# ============================================================================

class PatternSource(ABC):
    """Where pattern documents come from."""

    @abstractmethod
    def read_common(self) -> Mapping[str, Any]:
        """Return the common document. Raises DataLoadError if unavailable."""

    @abstractmethod
    def read_region(self, code: str) -> Optional[Mapping[str, Any]]:
        """
        Return the override document for a lower-case region code.

        Returns None when no document exists for the code; raises
        DataLoadError when one exists but cannot be read.
        """

    def available_regions(self) -> List[str]:
        return []


class PackagedPatternSource(PatternSource):
    """
    Reads JSON documents from a knowledge directory laid out as:

        <base_dir>/common/patterns.json
        <base_dir>/regions/<code>.json
    """

    DEFAULT_DIR = Path(__file__).resolve().parents[2] / 'knowledge'

    def __init__(self, base_dir: Optional[Path] = None):
        self.base_dir = Path(base_dir) if base_dir else self.DEFAULT_DIR

    @property
    def common_path(self) -> Path:
        return self.base_dir / 'common' / 'patterns.json'

    def region_path(self, code: str) -> Path:
        return self.base_dir / 'regions' / f'{code}.json'

    def read_common(self) -> Mapping[str, Any]:
        return self._read_json(self.common_path)

    def read_region(self, code: str) -> Optional[Mapping[str, Any]]:
        path = self.region_path(code)
        if not path.is_file():
            return None
        return self._read_json(path)

    def available_regions(self) -> List[str]:
        regions_dir = self.base_dir / 'regions'
        if not regions_dir.is_dir():
            return []
        return sorted(p.stem.lower() for p in regions_dir.glob('*.json'))

    @staticmethod
    def _read_json(path: Path) -> Mapping[str, Any]:
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise DataLoadError(f"Could not read {path}: {e}", source=str(path))
        if not isinstance(data, dict):
            raise DataLoadError(f"{path} does not contain a JSON object", source=str(path))
        return data


class InMemoryPatternSource(PatternSource):
    """Serves documents held in memory (tests, embedded hosts)."""

    def __init__(
        self,
        common: Optional[Mapping[str, Any]] = None,
        regions: Optional[Mapping[str, Mapping[str, Any]]] = None
    ):
        self.common = common
        self.regions = {k.lower(): v for k, v in (regions or {}).items()}

    def read_common(self) -> Mapping[str, Any]:
        if self.common is None:
            raise DataLoadError("No common document configured", source="memory")
        return self.common

    def read_region(self, code: str) -> Optional[Mapping[str, Any]]:
        return self.regions.get(code)

    def available_regions(self) -> List[str]:
        return sorted(self.regions.keys())


# ============================================================================
# Cache and store
# ============================================================================

class PatternCache:
    """
    Effective tables keyed by region code (``None`` for common-only).

    Concurrent readers are fine. Writes for the same key always store an
    equivalent table, so a lost race only wastes a merge.
    """

    def __init__(self):
        self._tables: Dict[Optional[str], PatternTable] = {}

    def get(self, code: Optional[str]) -> Optional[PatternTable]:
        return self._tables.get(code)

    def put(self, code: Optional[str], table: PatternTable) -> PatternTable:
        return self._tables.setdefault(code, table)

    def clear(self):
        self._tables.clear()

    def __contains__(self, code: Optional[str]) -> bool:
        return code in self._tables

    def __len__(self) -> int:
        return len(self._tables)


class PatternStore:
    """
    Layered pattern knowledge: common table plus per-region overrides.

    Example usage:

        store = PatternStore(PackagedPatternSource())
        table = store.get_effective_patterns('ca')
    """

    def __init__(self, source: PatternSource, cache: Optional[PatternCache] = None):
        self.source = source
        self.cache = cache if cache is not None else PatternCache()
        self._common: Optional[PatternTable] = None

    def load_common(self) -> PatternTable:
        """Load the common table, degrading to the built-in default on any failure."""
        if self._common is not None:
            return self._common

        try:
            table = PatternTable.from_document(self.source.read_common())
            if len(table) == 0:
                raise DataLoadError("Common document contains no usable categories")
        except DataLoadError as e:
            logger.warning(f"Using built-in default patterns: {e}")
            table = PatternTable(
                rules=DEFAULT_TABLE.rules,
                diagnostics=(f"Common patterns unavailable, using defaults: {e}",)
            )

        logger.info(f"Loaded common patterns: {len(table)} categories")
        self._common = table
        return table

    def load_region(self, code: Optional[str]) -> Optional[PatternTable]:
        """Load the override fragment for a region, or None if there is none."""
        normalized = normalize_region_code(code)
        if normalized is None:
            return None

        try:
            document = self.source.read_region(normalized)
            if document is None:
                logger.debug(f"No region patterns for '{normalized}'")
                return None
            table = PatternTable.from_document(document, region=normalized, region_specific=True)
        except DataLoadError as e:
            logger.warning(f"Ignoring region patterns for '{normalized}': {e}")
            return None

        logger.info(f"Loaded region patterns for '{normalized}': {len(table)} categories")
        return table

    def get_effective_patterns(self, code: Optional[str] = None) -> PatternTable:
        """Return the merged table for a region (common only when code is None or unknown)."""
        normalized = normalize_region_code(code)
        cached = self.cache.get(normalized)
        if cached is not None:
            return cached

        table = merge_tables(self.load_common(), self.load_region(normalized))
        return self.cache.put(normalized, table)

    def available_regions(self) -> List[str]:
        return self.source.available_regions()
