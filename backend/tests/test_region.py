"""
Unit tests for region identification and registration-site scoring.

Run with: pytest tests/test_region.py -v
"""

import pytest

from bizform.services.detection_pipeline.region import RegionIdentifier


@pytest.fixture
def identifier():
    return RegionIdentifier()


# ============================================================================
# Address indicators
# ============================================================================

class TestIdentifyFromAddress:
    @pytest.mark.parametrize('address, expected', [
        ('https://bizfileonline.sos.ca.gov/registration', 'CA'),
        ('https://corp.delaware.gov/howtoform/', 'DE'),
        ('https://www.sos.state.tx.us/corp/forms.shtml', 'TX'),
        ('https://dcra.dc.gov/service/business-licensing', 'DC'),
        ('https://mytax.dc.gov/_/', 'DC'),
        ('https://dos.myflorida.com/sunbiz/', 'FL'),
        ('https://efile.sunbiz.org/llc_file.html', 'FL'),
        ('https://www.newyork.gov/business', 'NY'),
        ('https://portal.example.com/states/oh/register', 'OH'),
        ('sos.wa.gov/corps', 'WA'),
    ])
    def test_known_indicators(self, identifier, address, expected):
        assert identifier.identify(address) == expected

    @pytest.mark.parametrize('address', [
        None,
        '',
        'https://www.example.com/register',
        'not a url at all',
    ])
    def test_no_indicator(self, identifier, address):
        assert identifier.identify_from_address(address) is None

    def test_address_beats_headings(self, identifier):
        assert identifier.identify('https://corp.delaware.gov/', 'Texas Secretary of State') == 'DE'


# ============================================================================
# Heading fallback
# ============================================================================

class TestIdentifyFromHeadings:
    def test_single_jurisdiction_name(self, identifier):
        assert identifier.identify('https://www.example.com', 'Delaware Division of Corporations') == 'DE'

    def test_longest_name_wins(self, identifier):
        assert identifier.identify_from_headings('West Virginia Business Registration') == 'WV'

    def test_aliases(self, identifier):
        assert identifier.identify_from_headings('Register a business in Washington, D.C.') == 'DC'
        assert identifier.identify_from_headings('Commonwealth of Massachusetts') == 'MA'

    def test_two_jurisdictions_are_ambiguous(self, identifier):
        assert identifier.identify_from_headings('Texas and Oklahoma filing guide') is None

    def test_two_letter_codes_are_not_matched(self, identifier):
        assert identifier.identify_from_headings('Sign IN or register, OR continue as guest') is None

    def test_empty_headings(self, identifier):
        assert identifier.identify(None, None) is None
        assert identifier.identify_from_headings('') is None


class TestStateCodeFor:
    @pytest.mark.parametrize('text, expected', [
        ('California', 'CA'),
        ('ca', 'CA'),
        ('New York', 'NY'),
        ('District of Columbia', 'DC'),
        ('Select a state', None),
        ('', None),
    ])
    def test_state_code_for(self, identifier, text, expected):
        assert identifier.state_code_for(text) == expected


# ============================================================================
# Registration site assessment
# ============================================================================

class TestAssessPage:
    def test_state_registration_portal_scores_high(self, identifier):
        assessment = identifier.assess_page('https://bizfileonline.sos.ca.gov/registration/business?type=LLC')
        assert assessment.is_government
        assert assessment.region == 'CA'
        assert assessment.is_likely_registration_site
        assert assessment.score <= 100
        assert 'business' in assessment.matched_terms

    def test_unrelated_site_scores_low(self, identifier):
        assessment = identifier.assess_page('https://www.example.com/blog/recipes')
        assert assessment.score == 0
        assert not assessment.is_government
        assert not assessment.is_likely_registration_site

    def test_empty_address(self, identifier):
        assessment = identifier.assess_page('')
        assert assessment.score == 0
        assert assessment.reasons == ['Empty address']

    def test_to_dict(self, identifier):
        data = identifier.assess_page('https://corp.delaware.gov/').to_dict()
        assert data['region'] == 'DE'
        assert data['is_government'] is True
        assert set(data) >= {'score', 'matched_terms', 'reasons', 'is_likely_registration_site'}
