"""
Tests for region pattern document validation and its command line entry point.

Run with: pytest tests/test_schema_validation.py -v
"""

import json

import pytest

from bizform.services.detection_pipeline.knowledge import PackagedPatternSource
from bizform.services.detection_pipeline.schema_validation import (
    main,
    validate_region_document,
    validate_region_file,
)

COMMON = ['business_name', 'tax_identifier']


def _write(tmp_path, name, document):
    path = tmp_path / name
    path.write_text(json.dumps(document) if not isinstance(document, str) else document, encoding='utf-8')
    return path


# ============================================================================
# Documents
# ============================================================================

class TestDocument:
    def test_valid_document(self):
        report = validate_region_document(
            {'_meta': {'region': 'ZZ'}, 'business_name': {'patterns': ['entity\\s*name'], 'priority': 90}},
            COMMON
        )
        assert report.valid
        assert report.categories == ['business_name']
        assert report.warnings == []

    @pytest.mark.parametrize('document, fragment', [
        ([], 'JSON object'),
        ({}, 'no categories'),
        ({'x': 'nope'}, 'entry must be an object'),
        ({'x': {'priority': 50}}, 'patterns or keywords'),
        ({'x': {'patterns': 'phone', 'keywords': ['phone']}}, 'list of strings'),
        ({'x': {'patterns': ['(bad'], 'priority': 50}}, 'invalid regex'),
        ({'x': {'patterns': ['x'], 'priority': 101}}, 'outside 0-100'),
        ({'x': {'patterns': ['x'], 'priority': 'high'}}, 'must be an integer'),
        ({'x': {'patterns': ['x'], 'priority': True}}, 'must be an integer'),
        ({'x': {'patterns': ['x'], 'priority': 50, 'validation': []}}, 'must be an object'),
    ])
    def test_errors(self, document, fragment):
        report = validate_region_document(document, COMMON)
        assert not report.valid
        assert any(fragment in error for error in report.errors)

    def test_warnings_do_not_invalidate(self):
        report = validate_region_document({
            'business_name': {'keywords': ['entity name']},
            'permit_number': {'patterns': ['permit'], 'priority': 80, 'note': 'x',
                              'validation': {'types': ['hologram']}},
        }, COMMON)
        assert report.valid
        assert any('no priority' in w for w in report.warnings)
        assert any('not in the common table' in w for w in report.warnings)
        assert any('unknown keys note' in w for w in report.warnings)
        assert any('hologram' in w for w in report.warnings)

    def test_to_dict(self):
        data = validate_region_document({'x': {'patterns': ['x'], 'priority': 5}}, source='zz').to_dict()
        assert data == {'source': 'zz', 'valid': True, 'errors': [], 'warnings': [], 'categories': ['x']}


# ============================================================================
# Files and CLI
# ============================================================================

class TestFiles:
    def test_file_name_must_be_a_region_code(self, tmp_path):
        path = _write(tmp_path, 'california.json', {'x': {'patterns': ['x'], 'priority': 5}})
        report = validate_region_file(path)
        assert not report.valid
        assert any('two-letter region code' in e for e in report.errors)

    def test_unreadable_file(self, tmp_path):
        path = _write(tmp_path, 'zz.json', '{not json')
        report = validate_region_file(path)
        assert any('Could not read file' in e for e in report.errors)

    @pytest.mark.parametrize('code', ['ca', 'de', 'dc'])
    def test_packaged_documents_are_valid(self, code):
        source = PackagedPatternSource()
        report = validate_region_file(source.region_path(code))
        assert report.valid, report.errors


class TestMain:
    def test_all_packaged_documents(self, capsys):
        assert main(['--all']) == 0
        assert 'ca.json' in capsys.readouterr().out

    def test_explicit_file(self, tmp_path):
        path = _write(tmp_path, 'zz.json', {'business_name': {'patterns': ['x'], 'priority': 90}})
        assert main([str(path)]) == 0

    def test_invalid_file_fails(self, tmp_path, capsys):
        path = _write(tmp_path, 'zz.json', {'x': {'patterns': ['(bad'], 'priority': 90}})
        assert main([str(path)]) == 1
        assert 'ERROR' in capsys.readouterr().out

    def test_no_arguments(self):
        assert main([]) == 1
