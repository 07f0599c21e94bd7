"""
Region Pattern Document Validation
==================================

Checks a region override document before it is shipped in the knowledge
directory. The store itself tolerates bad entries (it skips them), so this is
where authors find out about them.

Errors (document rejected):
- the document is not a JSON object, or has no categories
- a category entry is not an object
- an entry defines neither patterns nor keywords
- patterns/keywords/attributes is not a list of strings
- priority outside 0-100 or not an integer
- a pattern that does not compile
- validation that is not an object

Warnings:
- no priority (the common priority is kept when merging)
- a category the common table does not know (it is added as-is)
- validation types outside the known field types

Usage:
    bizform-validate-region knowledge/regions/ca.json
    bizform-validate-region --all
"""

import argparse
import json
import logging
import re
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from .knowledge import PackagedPatternSource, PatternStore, normalize_region_code

logger = logging.getLogger(__name__)

LIST_KEYS = ('patterns', 'keywords', 'attributes')
KNOWN_KEYS = set(LIST_KEYS) | {'priority', 'validation'}
KNOWN_FIELD_TYPES = {
    'text', 'email', 'tel', 'number', 'date', 'url', 'textarea', 'select',
    'single_select', 'multi_select', 'radio', 'checkbox', 'boolean', 'boolean_field', 'password'
}
MIN_CATEGORIES = 1


@dataclass
class ValidationReport:
    """Result of validating one region document."""
    source: str
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    categories: List[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            'source': self.source,
            'valid': self.valid,
            'errors': list(self.errors),
            'warnings': list(self.warnings),
            'categories': list(self.categories)
        }


def validate_region_document(
    document: Any,
    common_categories: Optional[Iterable[str]] = None,
    source: str = '<document>'
) -> ValidationReport:
    """
    Validate a region override document.

    Args:
        document: Parsed JSON document
        common_categories: Categories of the common table, used to flag
            categories the override introduces
        source: Name used in the report (file path, region code)

    Returns:
        ValidationReport
    """
    report = ValidationReport(source=source)
    if not isinstance(document, dict):
        report.errors.append(f"Document must be a JSON object, got {type(document).__name__}")
        return report

    known = set(common_categories) if common_categories is not None else None

    for category, entry in document.items():
        if not isinstance(category, str) or category.startswith('_'):
            continue
        report.categories.append(category)

        if not isinstance(entry, dict):
            report.errors.append(f"{category}: entry must be an object")
            continue

        for key in LIST_KEYS:
            value = entry.get(key)
            if value is None:
                continue
            if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
                report.errors.append(f"{category}.{key}: must be a list of strings")

        if not entry.get('patterns') and not entry.get('keywords'):
            report.errors.append(f"{category}: must define patterns or keywords")

        for index, pattern in enumerate(entry.get('patterns') or []):
            if not isinstance(pattern, str):
                continue
            try:
                re.compile(pattern, re.IGNORECASE)
            except re.error as e:
                report.errors.append(f"{category}.patterns[{index}]: invalid regex {pattern!r} ({e})")

        priority = entry.get('priority')
        if priority is None:
            report.warnings.append(f"{category}: no priority; the common priority is kept")
        elif isinstance(priority, bool) or not isinstance(priority, int):
            report.errors.append(f"{category}.priority: must be an integer")
        elif not 0 <= priority <= 100:
            report.errors.append(f"{category}.priority: {priority} is outside 0-100")

        validation = entry.get('validation')
        if validation is not None:
            if not isinstance(validation, dict):
                report.errors.append(f"{category}.validation: must be an object")
            else:
                unknown_types = [t for t in validation.get('types') or [] if t not in KNOWN_FIELD_TYPES]
                if unknown_types:
                    report.warnings.append(f"{category}.validation.types: unknown {', '.join(map(str, unknown_types))}")

        unknown_keys = sorted(set(entry) - KNOWN_KEYS)
        if unknown_keys:
            report.warnings.append(f"{category}: unknown keys {', '.join(unknown_keys)}")

        if known is not None and category not in known:
            report.warnings.append(f"{category}: not in the common table; added as a region-only category")

    if len(report.categories) < MIN_CATEGORIES:
        report.errors.append("Document defines no categories")

    return report


def validate_region_file(path: Path, common_categories: Optional[Iterable[str]] = None) -> ValidationReport:
    """Read and validate one region document file."""
    path = Path(path)
    try:
        with open(path, 'r', encoding='utf-8') as f:
            document = json.load(f)
    except (OSError, ValueError) as e:
        report = ValidationReport(source=str(path))
        report.errors.append(f"Could not read file: {e}")
        return report

    report = validate_region_document(document, common_categories, source=str(path))
    if normalize_region_code(path.stem) is None:
        report.errors.append(f"File name {path.name!r} is not a two-letter region code")
    return report


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Validate region pattern documents")
    parser.add_argument("files", nargs="*", help="Region document files to validate")
    parser.add_argument("--all", action="store_true", help="Validate every packaged region document")
    parser.add_argument("--knowledge-dir", type=str, default=None,
                        help="Knowledge directory (defaults to the packaged documents)")
    parser.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING"], default="WARNING",
                        help="Set logging verbosity (default: WARNING)")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    source = PackagedPatternSource(Path(args.knowledge_dir) if args.knowledge_dir else None)
    files = [Path(f) for f in args.files]
    if args.all:
        files.extend(source.region_path(code) for code in source.available_regions())
    if not files:
        parser.print_usage()
        return 1

    common_categories = PatternStore(source).load_common().categories

    all_valid = True
    for path in files:
        report = validate_region_file(path, common_categories)
        print("=" * 50)
        print(f"Validation results for {report.source}")
        print("=" * 50)
        for error in report.errors:
            print(f"ERROR: {error}")
        for warning in report.warnings:
            print(f"WARNING: {warning}")
        if report.valid:
            print(f"OK ({len(report.categories)} categories, {len(report.warnings)} warnings)")
        else:
            all_valid = False

    return 0 if all_valid else 1


if __name__ == "__main__":
    sys.exit(main())
