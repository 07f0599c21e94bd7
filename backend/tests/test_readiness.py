"""
Unit tests for the readiness evaluator and the pass stage tracker.

Run with: pytest tests/test_readiness.py -v
"""

import itertools

import pytest

from bizform.services.detection_pipeline.classifier import FieldClassifier
from bizform.services.detection_pipeline.element_model import ElementModelBuilder
from bizform.services.detection_pipeline.knowledge import PatternTable
from bizform.services.detection_pipeline.readiness import (
    PassStage,
    ReadinessEvaluator,
    StageTracker,
)
from bizform.services.detection_pipeline.records import (
    Classification, ClassificationMethod, Control, ControlKind, FieldLabel,
    FieldRecord, FieldType, LabelSource, UNCLASSIFIED_CATEGORY
)

from page_builders import scenario_a_tree, scenario_b_tree

_ordinals = itertools.count(1)


def _field(label, category=None, confidence=0, field_type=FieldType.TEXT,
           required=False, name=None, kind=ControlKind.TEXT):
    name = name or label.lower().replace(' ', '_')
    control = Control(ordinal=next(_ordinals), kind=kind, name=name, element_id=name, required=required)
    if category:
        classification = Classification(category, confidence, ClassificationMethod.PATTERN_SCORE)
    else:
        classification = Classification(UNCLASSIFIED_CATEGORY, 0, ClassificationMethod.UNCLASSIFIED)
    return FieldRecord(
        field_id=name,
        label=FieldLabel(label, LabelSource.EXPLICIT),
        field_type=field_type,
        controls=(control,),
        required=required,
        classification=classification
    )


def _check(summary, prefix):
    return next(c for c in summary.checks if c.name.startswith(prefix))


@pytest.fixture
def evaluator():
    return ReadinessEvaluator()


# ============================================================================
# Scenarios
# ============================================================================

class TestScenarios:
    def test_minimal_registration_form_is_ready(self, evaluator, common_table):
        records = list(ElementModelBuilder().build(scenario_a_tree()).fields)
        summary = evaluator.evaluate(FieldClassifier(common_table).classify_all(records), common_table)

        assert summary.total == 3
        assert summary.classified == 3
        assert summary.classification_rate == 100
        assert summary.critical_found == ('business_name', 'tax_identifier', 'entity_type')
        assert summary.category_count == 3
        assert summary.average_confidence >= 90
        assert summary.validation_score == 100
        assert summary.readiness_score == 100
        assert summary.ready

    def test_unrelated_form_is_not_ready(self, evaluator, common_table):
        records = list(ElementModelBuilder().build(scenario_b_tree()).fields)
        summary = evaluator.evaluate(FieldClassifier(common_table).classify_all(records), common_table)

        assert summary.total == 30
        assert summary.classified == 0
        assert summary.classification_rate == 0
        assert summary.average_confidence == 0
        assert not summary.gates['classification_rate']
        assert not summary.gates['critical_fields']
        assert not summary.ready
        assert summary.readiness_score < 50
        assert not _check(summary, 'Business name').passed

    def test_no_fields(self, evaluator):
        summary = evaluator.evaluate([])
        assert summary.total == 0
        assert summary.classification_rate == 0
        assert not summary.ready


# ============================================================================
# Gates and statistics
# ============================================================================

class TestGates:
    def _good_fields(self):
        return [
            _field('Business Name', 'business_name', 95),
            _field('EIN', 'tax_identifier', 95),
            _field('Entity Type', 'entity_type', 90, field_type=FieldType.SELECT),
            _field('City', 'city', 85),
        ]

    def test_all_gates_pass(self, evaluator):
        summary = evaluator.evaluate(self._good_fields())
        assert all(summary.gates.values())
        assert summary.ready

    def test_incomplete_pass_is_never_ready(self, evaluator):
        summary = evaluator.evaluate(self._good_fields(), incomplete=True)
        assert all(summary.gates.values())
        assert summary.incomplete
        assert not summary.ready

    def test_readiness_score_is_percentage_of_gates(self, evaluator):
        fields = [
            _field('Business Name', 'business_name', 40),
            _field('EIN', 'tax_identifier', 40),
            _field('Notes'),
        ]
        summary = evaluator.evaluate(fields)
        # rate 67%, 2 critical, 2 categories, avg 40, validation passes
        assert summary.gates == {
            'classification_rate': True,
            'critical_fields': True,
            'category_diversity': False,
            'average_confidence': False,
            'validation_score': True,
        }
        assert summary.readiness_score == 60

    def test_statistics(self, evaluator):
        fields = [
            _field('Business Name', 'business_name', 100),
            _field('DBA Name', 'business_name', 60),
            _field('Favorite Color'),
        ]
        summary = evaluator.evaluate(fields)
        assert summary.classified == 2
        assert summary.unclassified == 1
        assert summary.classification_rate == 67
        assert summary.average_confidence == 80
        assert summary.categories == {'business_name': 2}
        assert summary.low_confidence == ('dba_name',)
        assert summary.duplicate_categories == ('business_name',)

    def test_unclassified_records_without_classification(self, evaluator):
        record = _field('Business Name', 'business_name', 100)
        bare = FieldRecord(
            field_id='bare', label=FieldLabel('Bare', LabelSource.DERIVED),
            field_type=FieldType.TEXT, controls=record.controls
        )
        summary = evaluator.evaluate([record, bare])
        assert summary.classified == 1
        assert summary.unclassified == 1

    def test_password_fields_are_suspicious(self, evaluator):
        fields = [
            _field('Create a password', 'business_field', 50, field_type=FieldType.PASSWORD,
                   kind=ControlKind.PASSWORD, name='newPassword'),
            _field('Business Name', 'business_name', 100),
        ]
        assert evaluator.evaluate(fields).suspicious == ('newPassword',)

    def test_to_dict(self, evaluator):
        data = evaluator.evaluate(self._good_fields()).to_dict()
        assert data['ready'] is True
        assert data['readiness_score'] == 100
        assert len(data['validation_checks']) == 6
        assert set(data['issues']) == {'low_confidence', 'duplicate_categories', 'suspicious'}


# ============================================================================
# Validation checks
# ============================================================================

class TestValidationChecks:
    def test_checks_run_in_fixed_order(self, evaluator):
        names = [c.name for c in evaluator.run_checks([])]
        assert names == [
            'Business name field classified as business_name',
            'Organization type selection classified as entity_type',
            'FEIN/EIN field classified as tax_identifier',
            'Region-specific fields recognized',
            'Address fields identified',
            'Required fields classified',
        ]

    def test_misclassified_business_name_fails(self, evaluator):
        summary = evaluator.evaluate([_field('Business Name', 'owner_name', 80)])
        assert not _check(summary, 'Business name').passed

    def test_entity_type_check(self, evaluator):
        good = evaluator.evaluate([_field('Organization Type', 'entity_type', 90, field_type=FieldType.SELECT)])
        bad = evaluator.evaluate([_field('Organization Type', 'selection_field', 50, field_type=FieldType.SELECT)])
        assert _check(good, 'Organization type').passed
        assert not _check(bad, 'Organization type').passed

    def test_tax_identifier_check(self, evaluator):
        bad = evaluator.evaluate([_field('FEIN', 'business_field', 50)])
        assert not _check(bad, 'FEIN/EIN').passed
        absent = evaluator.evaluate([_field('Business Name', 'business_name', 100)])
        assert _check(absent, 'FEIN/EIN').detail == 'not present'

    def test_region_check(self, evaluator):
        table = PatternTable.from_document(
            {'clean_hands': {'patterns': ['clean\\s*hands'], 'keywords': ['clean hands']}},
            region='dc', region_specific=True
        )
        missed = evaluator.evaluate([_field('Clean Hands Certificate')], table)
        found = evaluator.evaluate([_field('Clean Hands Certificate', 'clean_hands', 80)], table)
        no_region = evaluator.evaluate([_field('Clean Hands Certificate')], PatternTable())

        assert not _check(missed, 'Region-specific').passed
        assert 'Clean Hands Certificate' in _check(missed, 'Region-specific').detail
        assert _check(found, 'Region-specific').passed
        assert _check(no_region, 'Region-specific').detail == 'no region'

    def test_address_check(self, evaluator):
        good = evaluator.evaluate([_field('Street Address', 'address', 90), _field('City')])
        bad = evaluator.evaluate([_field('Street Address'), _field('City')])
        assert _check(good, 'Address').passed
        assert not _check(bad, 'Address').passed

    def test_required_coverage(self, evaluator):
        fields = [_field(f'Required {i}', 'business_field' if i < 3 else None, 50, required=True) for i in range(5)]
        check = _check(evaluator.evaluate(fields), 'Required')
        assert not check.passed
        assert check.detail == '3/5 classified'


# ============================================================================
# Stage tracking
# ============================================================================

class TestStageTracker:
    def test_full_path(self):
        tracker = StageTracker()
        for stage in (PassStage.BUILDING_CONTROLS, PassStage.SEGMENTING, PassStage.CLASSIFYING,
                      PassStage.SUMMARIZING, PassStage.READY):
            tracker.advance(stage)
        assert tracker.stage.is_terminal
        assert tracker.trail[0] == PassStage.IDLE
        assert len(tracker.trail) == 6

    def test_aborted_pass_skips_to_summarizing(self):
        tracker = StageTracker()
        tracker.advance(PassStage.BUILDING_CONTROLS)
        tracker.advance(PassStage.SUMMARIZING)
        tracker.advance(PassStage.NEEDS_IMPROVEMENT)
        assert tracker.stage == PassStage.NEEDS_IMPROVEMENT

    @pytest.mark.parametrize('path', [
        (PassStage.SEGMENTING,),
        (PassStage.BUILDING_CONTROLS, PassStage.CLASSIFYING),
        (PassStage.BUILDING_CONTROLS, PassStage.SUMMARIZING, PassStage.READY, PassStage.IDLE),
    ])
    def test_illegal_transitions(self, path):
        tracker = StageTracker()
        with pytest.raises(ValueError):
            for stage in path:
                tracker.advance(stage)
