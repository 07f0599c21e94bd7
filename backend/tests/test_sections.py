"""
Unit tests for the section segmenter.

Run with: pytest tests/test_sections.py -v
"""

import pytest

from bizform.services.detection_pipeline.element_model import ElementModelBuilder
from bizform.services.detection_pipeline.geometry import BoundingBox
from bizform.services.detection_pipeline.records import (
    Control, ControlKind, ElementModel, FieldLabel, FieldRecord, FieldType,
    HeaderCandidate, HeaderKind, LabelSource, SectionOrigin
)
from bizform.services.detection_pipeline.sections import (
    CATCH_ALL_SECTION_NAME,
    SectionSegmenter,
    is_definitely_field_label,
    looks_like_field_group_label,
)

from page_builders import form, heading, labelled_input, page, radio_group, rect, scenario_a_tree


@pytest.fixture
def segmenter():
    return SectionSegmenter()


def _segment(segmenter, tree, page_title=''):
    model = ElementModelBuilder().build(tree, page_title=page_title)
    return model, segmenter.segment(model)


def _record(field_id, top, ancestors=()):
    box = BoundingBox(left=40, top=top, width=300, height=30)
    control = Control(ordinal=top, kind=ControlKind.TEXT, name=field_id, bbox=box, ancestors=ancestors)
    return FieldRecord(
        field_id=field_id,
        label=FieldLabel(field_id, LabelSource.EXPLICIT),
        field_type=FieldType.TEXT,
        controls=(control,),
        bbox=box
    )


def _header(text, top, ordinal):
    return HeaderCandidate(
        text=text,
        kind=HeaderKind.HEADING,
        ordinal=ordinal,
        bbox=BoundingBox(left=40, top=top, width=500, height=30),
        inside_form=True
    )


def _two_section_form(extra=()):
    return page(form(
        heading('Business Information', 240),
        labelled_input('Business Name', 'bn', 280),
        labelled_input('DBA Name', 'dba', 350),
        heading('Principal Address', 430),
        labelled_input('Street Address', 'street', 470),
        labelled_input('City', 'city', 540),
        labelled_input('ZIP Code', 'zip', 610),
        *extra
    ))


# ============================================================================
# Header bands
# ============================================================================

class TestHeaderBands:
    def test_band_runs_from_header_bottom_to_next_header_top(self, segmenter):
        fields = [_record('a', 250), _record('b', 415), _record('c', 500)]
        model = ElementModel(fields=tuple(fields), form_bounds=BoundingBox(left=0, top=0, width=800, height=1000))
        sections = segmenter.header_bands([_header('First', 100, 1), _header('Second', 400, 2)], fields, model)

        assert [(s.top, s.bottom) for s in sections] == [(130.0, 400.0), (430.0, 1001.0)]
        assert segmenter.assign(fields[0], sections) == 0
        assert segmenter.assign(fields[1], sections) is None
        assert segmenter.assign(fields[2], sections) == 1

    def test_bands_follow_page_order_not_document_order(self, segmenter):
        fields = [_record('a', 250)]
        model = ElementModel(fields=tuple(fields))
        sections = segmenter.header_bands([_header('Lower', 400, 1), _header('Upper', 100, 2)], fields, model)
        assert [s.name for s in sections] == ['Upper', 'Lower']

    def test_structural_containment_beats_geometry(self, segmenter):
        inside = _record('inside', 250, ancestors=(7, 3))
        sections = segmenter.header_bands(
            [_header('Top', 100, 1), HeaderCandidate(text='Agent', kind=HeaderKind.CAPTION, ordinal=8,
                                                     bbox=BoundingBox(40, 600, 500, 30), container=7)],
            [inside],
            ElementModel(fields=(inside,))
        )
        assert sections[segmenter.assign(inside, sections)].name == 'Agent'


# ============================================================================
# Segmentation
# ============================================================================

class TestSegment:
    def test_headings_split_the_form(self, segmenter):
        _, result = _segment(segmenter, _two_section_form())
        assert [s.name for s in result.sections] == ['Business Information', 'Principal Address']
        assert all(s.origin == SectionOrigin.STRUCTURAL_HEADING for s in result.sections)
        assert [f.name for f in result.fields_in(result.sections[0])] == ['bn', 'dba']
        assert [f.name for f in result.fields_in(result.sections[1])] == ['street', 'city', 'zip']

    def test_every_field_gets_exactly_one_section(self, segmenter):
        extra = ({'tag': 'input', 'attrs': {'type': 'text', 'name': 'notes', 'aria-label': 'Notes'}},)
        _, result = _segment(segmenter, _two_section_form(extra))
        indexes = {s.index for s in result.sections}
        assert all(f.section_index in indexes for f in result.fields)
        assert [s.index for s in result.sections] == list(range(len(result.sections)))
        assert all(s.name for s in result.sections)

    def test_field_without_geometry_goes_to_catch_all(self, segmenter):
        extra = ({'tag': 'input', 'attrs': {'type': 'text', 'name': 'notes', 'aria-label': 'Notes'}},)
        _, result = _segment(segmenter, _two_section_form(extra))
        catch_all = result.sections[-1]
        assert catch_all.name == CATCH_ALL_SECTION_NAME
        assert [f.name for f in result.fields_in(catch_all)] == ['notes']

    def test_single_field_caption_is_not_a_section(self, segmenter):
        tree = page(form(
            heading('Email', 240),
            labelled_input('Email Address', 'email', 280, input_type='email'),
            labelled_input('Business Name', 'bn', 350),
        ))
        _, result = _segment(segmenter, tree)
        assert [s.name for s in result.sections] != ['Email']
        assert result.sections[0].origin == SectionOrigin.DEFAULT

    def test_header_with_one_following_field_is_rejected(self, segmenter):
        tree = page(form(
            heading('Contact Details', 240),
            labelled_input('Phone', 'phone', 280),
            labelled_input('Business Name', 'bn', 700),
        ))
        model, result = _segment(segmenter, tree)
        header = next(h for h in model.headers if h.text == 'Contact Details')
        assert not segmenter.is_valid_header(header, list(model.fields), model)
        assert all(s.name != 'Contact Details' for s in result.sections)

    def test_page_chrome_above_the_form_is_ignored(self, segmenter):
        tree = page(
            heading('Welcome to the Business Portal', 100, tag='h1'),
            form(
                labelled_input('Business Name', 'bn', 130),
                labelled_input('DBA Name', 'dba', 200),
                top=120
            )
        )
        model, _ = _segment(segmenter, tree)
        header = next(h for h in model.headers if h.text == 'Welcome to the Business Portal')
        assert not segmenter.is_valid_header(header, list(model.fields), model)

    def test_same_heading_inside_the_form_is_accepted(self, segmenter):
        tree = page(form(
            heading('Business Details', 100),
            labelled_input('Business Name', 'bn', 130),
            labelled_input('DBA Name', 'dba', 200),
            top=80
        ))
        model, result = _segment(segmenter, tree)
        assert [s.name for s in result.sections] == ['Business Details']

    def test_fieldset_container_validates_header(self, segmenter):
        tree = page(form({
            'tag': 'fieldset',
            'rect': rect(240, height=400),
            'children': [
                {'tag': 'legend', 'text': 'Registered Agent'},
                labelled_input('Agent Name', 'agentName', 270),
                labelled_input('Agent Address', 'agentAddress', 600),
            ]
        }))
        _, result = _segment(segmenter, tree)
        assert [s.name for s in result.sections] == ['Registered Agent']
        assert all(f.section_index == 0 for f in result.fields)

    def test_clusters_when_no_header_is_accepted(self, segmenter):
        tree = page(form(
            labelled_input('Business Name', 'bn', 240),
            labelled_input('Trade Name', 'trade', 310),
            labelled_input('Street Address', 'street', 600),
            labelled_input('City', 'city', 670),
            labelled_input('ZIP Code', 'zip', 740),
        ))
        _, result = _segment(segmenter, tree)
        assert [s.name for s in result.sections] == ['Business Information', 'Address Information']
        assert all(s.origin == SectionOrigin.INFERRED_CLUSTER for s in result.sections)
        assert any('inferred' in d for d in result.diagnostics)

    def test_default_section_named_after_registration_title(self, segmenter):
        _, result = _segment(segmenter, scenario_a_tree(), page_title='Register a Business')
        assert len(result.sections) == 1
        assert result.sections[0].name == 'Business Registration'
        assert result.sections[0].origin == SectionOrigin.DEFAULT
        assert all(f.section_index == 0 for f in result.fields)

    def test_default_section_generic_name(self, segmenter):
        _, result = _segment(segmenter, scenario_a_tree(), page_title='Contact us')
        assert result.sections[0].name == 'Form Fields'

    def test_no_fields_no_sections(self, segmenter):
        result = segmenter.segment(ElementModel(fields=()))
        assert result.sections == []
        assert result.fields == []

    def test_question_heading_is_a_group_label(self, segmenter):
        tree = page(form(
            radio_group('Do you have employees?', 'emp', 240, [('yes', 'Yes'), ('no', 'No')]),
            labelled_input('Business Name', 'bn', 320),
            labelled_input('DBA Name', 'dba', 390),
        ))
        _, result = _segment(segmenter, tree)
        assert all(s.name != 'Do you have employees?' for s in result.sections)


# ============================================================================
# Text heuristics
# ============================================================================

class TestTextHeuristics:
    @pytest.mark.parametrize('text', ['Email', 'ZIP', 'Name:', 'Phone *', 'Yes', '3.'])
    def test_definite_field_labels(self, text):
        assert is_definitely_field_label(text)

    @pytest.mark.parametrize('text', ['Business Information', 'Principal Office Address'])
    def test_section_titles_are_not_field_labels(self, text):
        assert not is_definitely_field_label(text)
        assert not looks_like_field_group_label(text)

    @pytest.mark.parametrize('text', ['Entity Type', 'Type of Business', 'Do you have employees?', 'Payment Method'])
    def test_group_labels(self, text):
        assert looks_like_field_group_label(text)

    def test_prominence_score(self, segmenter):
        styled = HeaderCandidate(
            text='Owner Details', kind=HeaderKind.STYLED, ordinal=1,
            font_size=20, font_weight=700, block_level=True, class_hint='section-title'
        )
        plain = HeaderCandidate(text='Owner Details', kind=HeaderKind.STYLED, ordinal=1, font_size=16)
        assert segmenter.prominence_score(styled, 16) == 7
        assert segmenter.is_candidate(styled, 16)
        assert not segmenter.is_candidate(plain, 16)
