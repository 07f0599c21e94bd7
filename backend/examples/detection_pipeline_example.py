#!/usr/bin/env python3
"""
Form Detection Pipeline - Example Usage
=======================================

This script demonstrates how to run the business registration form detector
over a page snapshot captured by the host.

Usage:
    python examples/detection_pipeline_example.py path/to/snapshot.json
    python examples/detection_pipeline_example.py --demo
    python examples/detection_pipeline_example.py --patterns CA

Snapshot file format:
    {
      "address": "https://bizfileonline.sos.ca.gov/registration",
      "title": "Register a Business",
      "tree": {"tag": "body", "children": [...]}
    }
"""

import sys
import json
import argparse
import logging
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from bizform.services.detection_pipeline import (
    DetectionPipeline,
    PageSnapshot
)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def _labelled_input(label: str, name: str, top: float, input_type: str = 'text') -> dict:
    return {
        'tag': 'div',
        'rect': {'left': 40, 'top': top, 'width': 600, 'height': 60},
        'children': [
            {'tag': 'label', 'attrs': {'for': name}, 'text': label,
             'rect': {'left': 40, 'top': top, 'width': 300, 'height': 20}},
            {'tag': 'input', 'attrs': {'type': input_type, 'id': name, 'name': name},
             'rect': {'left': 40, 'top': top + 24, 'width': 300, 'height': 30}},
        ]
    }


DEMO_SNAPSHOT = {
    'address': 'https://bizfileonline.sos.ca.gov/registration/llc',
    'title': 'Register a Business - California Secretary of State',
    'tree': {
        'tag': 'body',
        'children': [{
            'tag': 'form',
            'rect': {'left': 20, 'top': 220, 'width': 700, 'height': 600},
            'children': [
                {'tag': 'h2', 'text': 'Business Information',
                 'rect': {'left': 40, 'top': 230, 'width': 400, 'height': 30},
                 'style': {'font_size': 24, 'font_weight': 700}},
                _labelled_input('Business Name', 'businessName', 270),
                _labelled_input('Federal Employer Identification Number (FEIN)', 'fein', 340),
                {'tag': 'div', 'rect': {'left': 40, 'top': 410, 'width': 600, 'height': 60}, 'children': [
                    {'tag': 'label', 'attrs': {'for': 'entityType'}, 'text': 'Entity Type'},
                    {'tag': 'select', 'attrs': {'id': 'entityType', 'name': 'entityType'},
                     'rect': {'left': 40, 'top': 434, 'width': 300, 'height': 30},
                     'children': [
                         {'tag': 'option', 'attrs': {'value': ''}, 'text': 'Select...'},
                         {'tag': 'option', 'attrs': {'value': 'llc'}, 'text': 'Limited Liability Company (LLC)'},
                         {'tag': 'option', 'attrs': {'value': 'corp'}, 'text': 'Corporation'},
                     ]},
                ]},
                {'tag': 'h2', 'text': 'Principal Address',
                 'rect': {'left': 40, 'top': 500, 'width': 400, 'height': 30},
                 'style': {'font_size': 24, 'font_weight': 700}},
                _labelled_input('Street Address', 'street', 540),
                _labelled_input('City', 'city', 610),
                _labelled_input('ZIP Code', 'zip', 680),
            ]
        }]
    }
}


def process_snapshot(snapshot_data: dict, output_path: str = None):
    """
    Run a detection pass over one snapshot and print the report.

    Args:
        snapshot_data: Parsed snapshot (address, title, tree)
        output_path: Optional path to save the JSON report
    """
    pipeline = DetectionPipeline()
    report = pipeline.run(PageSnapshot(
        tree=snapshot_data.get('tree') or {},
        address=snapshot_data.get('address', ''),
        title=snapshot_data.get('title', ''),
        heading_text=snapshot_data.get('heading_text', '')
    ))
    summary = report.summary

    print("\n" + "=" * 60)
    print("FORM DETECTION RESULTS")
    print("=" * 60)
    print(f"\nRegion: {report.region or 'unknown'}")
    if report.assessment:
        print(f"Registration site score: {report.assessment.score}")
    print(f"Stage: {report.stage.value}")
    print(f"Processing Time: {report.elapsed_ms}ms")

    for section in report.sections:
        print("\n" + "-" * 40)
        print(f"{section.name} ({section.origin.value})")
        print("-" * 40)
        for record in report.fields_in(section):
            classification = record.classification
            category = classification.category if classification else 'unclassified'
            confidence = classification.confidence if classification else 0
            indicator = "+" if confidence >= 70 else "?" if confidence > 0 else "-"
            print(f"  {indicator} [{record.field_type.value:14}] {category:22} "
                  f"(conf: {confidence:3d})  \"{record.label.text[:40]}\"")

    print("\n" + "-" * 40)
    print("READINESS")
    print("-" * 40)
    print(f"Classified: {summary.classified}/{summary.total} ({summary.classification_rate}%)")
    print(f"Average Confidence: {summary.average_confidence}")
    print(f"Validation Score: {summary.validation_score}%")
    print(f"Readiness Score: {summary.readiness_score}%  ready={summary.ready}")
    for check in summary.checks:
        print(f"  {'PASS' if check.passed else 'FAIL'}  {check.name}")
    for diagnostic in summary.diagnostics:
        print(f"  note: {diagnostic}")

    if output_path:
        with open(output_path, 'w') as f:
            json.dump(report.to_dict(), f, indent=2)
        logger.info(f"Report saved to: {output_path}")

    return report


def show_patterns(region: str):
    """Print the effective pattern table for a region."""
    pipeline = DetectionPipeline()
    table = pipeline.store.get_effective_patterns(region)

    print("\n" + "=" * 60)
    print(f"EFFECTIVE PATTERNS ({(table.region or 'common').upper()})")
    print("=" * 60)
    for rule in sorted(table, key=lambda r: -r.priority):
        marker = " *" if rule.region_specific else ""
        print(f"  {rule.category:28} priority {rule.priority:3d}  "
              f"{len(rule.patterns)} patterns, {len(rule.keywords)} keywords{marker}")
    print("\n* = extended by the region override")


def main():
    parser = argparse.ArgumentParser(
        description='Business Registration Form Detector',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Scan a captured snapshot
    python detection_pipeline_example.py snapshot.json

    # Scan and save the JSON report
    python detection_pipeline_example.py snapshot.json -o report.json

    # Scan the built-in demo page
    python detection_pipeline_example.py --demo

    # Show the merged patterns for California
    python detection_pipeline_example.py --patterns CA
        """
    )

    parser.add_argument('snapshot_path', nargs='?', help='Path to snapshot JSON file')
    parser.add_argument('-o', '--output', help='Path to save JSON report')
    parser.add_argument('--demo', action='store_true', help='Scan the built-in demo page')
    parser.add_argument('--patterns', metavar='REGION', help='Show effective patterns for a region and exit')

    args = parser.parse_args()

    if args.patterns:
        show_patterns(args.patterns)
        return

    if args.demo:
        process_snapshot(DEMO_SNAPSHOT, args.output)
        return

    if not args.snapshot_path:
        parser.print_help()
        print("\nError: Please provide a snapshot path or use --demo")
        sys.exit(1)

    snapshot_path = Path(args.snapshot_path)
    if not snapshot_path.exists():
        logger.error(f"File not found: {snapshot_path}")
        sys.exit(1)

    with open(snapshot_path, 'r', encoding='utf-8') as f:
        process_snapshot(json.load(f), args.output)


if __name__ == '__main__':
    main()
