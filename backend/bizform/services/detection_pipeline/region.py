"""
Region Identifier
=================

Infers the jurisdiction (two-letter state code, plus DC) a page belongs to,
so the knowledge store can layer that region's patterns over the common table.

Strategy:
---------
1. Address indicators: state sub-domains (``sos.ca.gov``, ``state.nj.us``),
   state names in the host (``corp.delaware.gov``), well-known agency hosts
   (``sunbiz.org``) and state path segments (``/states/tx/``).
2. Only if the address yields nothing: prominent heading text is scanned
   for a full jurisdiction name. Arbitrary body text is never scanned, since
   incidental mentions ("we also serve Texas") are common.

Tradeoffs:
----------
- Content naming more than one jurisdiction is treated as ambiguous (None).
- Two-letter codes are not matched in headings; "IN", "OR" and "ME" are
  ordinary English words.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional
from urllib.parse import parse_qsl, urlparse

logger = logging.getLogger(__name__)


STATE_NAMES: Dict[str, str] = {
    'AL': 'Alabama', 'AK': 'Alaska', 'AZ': 'Arizona', 'AR': 'Arkansas',
    'CA': 'California', 'CO': 'Colorado', 'CT': 'Connecticut', 'DE': 'Delaware',
    'FL': 'Florida', 'GA': 'Georgia', 'HI': 'Hawaii', 'ID': 'Idaho',
    'IL': 'Illinois', 'IN': 'Indiana', 'IA': 'Iowa', 'KS': 'Kansas',
    'KY': 'Kentucky', 'LA': 'Louisiana', 'ME': 'Maine', 'MD': 'Maryland',
    'MA': 'Massachusetts', 'MI': 'Michigan', 'MN': 'Minnesota', 'MS': 'Mississippi',
    'MO': 'Missouri', 'MT': 'Montana', 'NE': 'Nebraska', 'NV': 'Nevada',
    'NH': 'New Hampshire', 'NJ': 'New Jersey', 'NM': 'New Mexico', 'NY': 'New York',
    'NC': 'North Carolina', 'ND': 'North Dakota', 'OH': 'Ohio', 'OK': 'Oklahoma',
    'OR': 'Oregon', 'PA': 'Pennsylvania', 'RI': 'Rhode Island', 'SC': 'South Carolina',
    'SD': 'South Dakota', 'TN': 'Tennessee', 'TX': 'Texas', 'UT': 'Utah',
    'VT': 'Vermont', 'VA': 'Virginia', 'WA': 'Washington', 'WV': 'West Virginia',
    'WI': 'Wisconsin', 'WY': 'Wyoming', 'DC': 'District of Columbia',
}

# Extra names accepted in heading text
HEADING_ALIASES: Dict[str, str] = {
    'washington, d.c.': 'DC',
    'washington dc': 'DC',
    'washington d.c.': 'DC',
    'commonwealth of massachusetts': 'MA',
    'commonwealth of pennsylvania': 'PA',
    'commonwealth of virginia': 'VA',
    'commonwealth of kentucky': 'KY',
}

# Agency hosts that carry no state name or code
KNOWN_HOSTS: Dict[str, str] = {
    'sunbiz.org': 'FL',
    'ilsos.gov': 'IL',
    'bizfileonline.sos.ca.gov': 'CA',
    'mytax.dc.gov': 'DC',
    'dcra.dc.gov': 'DC',
    'dlcp.dc.gov': 'DC',
}

GOVERNMENT_PATTERNS = [r'\.gov$', r'\.us$', r'\bstate\.', r'\bsos\.', r'secretary.*state']
REGISTRATION_TERMS = ['business', 'entity', 'corporation', 'llc', 'register', 'formation', 'incorporate']
IMPORTANT_REGISTRATION_TERMS = {'register', 'business', 'llc', 'corporation', 'incorporate'}
TAX_TERMS = ['tax', 'revenue', 'irs', 'ein']
LICENSING_TERMS = ['license', 'permit', 'certification']
QUERY_TERMS = ['register', 'entity', 'business', 'formation', 'filing',
               'llc', 'corporation', 'corp', 'type', 'form']


@dataclass
class PageAssessment:
    """How strongly an address looks like a government registration site."""
    address: str
    score: int = 0
    region: Optional[str] = None
    is_government: bool = False
    matched_terms: List[str] = field(default_factory=list)
    reasons: List[str] = field(default_factory=list)

    LIKELY_THRESHOLD = 60

    @property
    def is_likely_registration_site(self) -> bool:
        return self.score >= self.LIKELY_THRESHOLD

    def to_dict(self) -> Dict:
        return {
            'address': self.address,
            'score': self.score,
            'region': self.region,
            'is_government': self.is_government,
            'is_likely_registration_site': self.is_likely_registration_site,
            'matched_terms': self.matched_terms,
            'reasons': self.reasons
        }


class RegionIdentifier:
    """
    Maps page addresses and heading text to region codes.

    Example usage:

        identifier = RegionIdentifier()
        identifier.identify("https://bizfileonline.sos.ca.gov/forms")  # 'CA'
        identifier.identify("https://example.com", "Delaware Division of Corporations")  # 'DE'
    """

    def __init__(self):
        self.codes = set(STATE_NAMES.keys())

        # Host names are written without separators ("newyork") or hyphenated
        self._host_names = sorted(
            [(name.lower().replace(' ', ''), code) for code, name in STATE_NAMES.items()] +
            [(name.lower().replace(' ', '-'), code) for code, name in STATE_NAMES.items() if ' ' in name],
            key=lambda item: len(item[0]),
            reverse=True
        )

        heading_names = {name.lower(): code for code, name in STATE_NAMES.items()}
        heading_names.update(HEADING_ALIASES)
        self._heading_lookup = heading_names
        # Longest first so "West Virginia" is not read as "Virginia"
        alternation = '|'.join(
            re.escape(name) for name in sorted(heading_names, key=len, reverse=True)
        )
        self._heading_re = re.compile(rf'(?<![\w.])({alternation})(?![\w])', re.IGNORECASE)

        self._address_res = [
            re.compile(r'(?:^|\.)sos\.([a-z]{2})\.'),
            re.compile(r'\.([a-z]{2})\.gov$'),
            re.compile(r'^([a-z]{2})\.gov$'),
            re.compile(r'\.([a-z]{2})\.us$'),
        ]
        self._path_res = [
            re.compile(r'/states?/([a-z]{2})(?:/|$)'),
        ]
        self._gov_path_re = re.compile(r'^/([a-z]{2})(?:/|$)')

    def identify(self, address: Optional[str], heading_text: Optional[str] = None) -> Optional[str]:
        """
        Identify the region for a page.

        Args:
            address: Page URL
            heading_text: Prominent heading text (page title, h1/h2, banner)

        Returns:
            Upper-case region code, or None
        """
        try:
            code = self.identify_from_address(address)
            if code:
                return code
            return self.identify_from_headings(heading_text)
        except Exception as e:
            logger.warning(f"Region identification failed for {address!r}: {e}")
            return None

    def identify_from_address(self, address: Optional[str]) -> Optional[str]:
        """Match an address against the domain/path indicator table."""
        if not address or not isinstance(address, str):
            return None

        parsed = urlparse(address if '://' in address else f'https://{address}')
        host = (parsed.hostname or '').lower()
        path = (parsed.path or '').lower()
        if not host:
            return None

        for known_host, code in KNOWN_HOSTS.items():
            if host == known_host or host.endswith('.' + known_host):
                return code

        if host == 'dc.gov' or host.endswith('.dc.gov'):
            return 'DC'

        for pattern in self._address_res:
            match = pattern.search(host)
            if match and match.group(1).upper() in self.codes:
                return match.group(1).upper()

        for name, code in self._host_names:
            if name in host:
                return code

        for pattern in self._path_res:
            match = pattern.search(path)
            if match and match.group(1).upper() in self.codes:
                return match.group(1).upper()

        if host.endswith('.gov'):
            match = self._gov_path_re.search(path)
            if match and match.group(1).upper() in self.codes:
                return match.group(1).upper()

        return None

    def identify_from_headings(self, heading_text: Optional[str]) -> Optional[str]:
        """Find exactly one jurisdiction named in heading text."""
        if not heading_text or not isinstance(heading_text, str):
            return None

        found = {
            self._heading_lookup[match.group(1).lower()]
            for match in self._heading_re.finditer(heading_text)
        }
        if len(found) == 1:
            return found.pop()
        if len(found) > 1:
            logger.debug(f"Ambiguous heading regions: {sorted(found)}")
        return None

    def state_code_for(self, text: str) -> Optional[str]:
        """Return the code for a bare state name or code (used for option lists)."""
        if not text:
            return None
        cleaned = text.strip().lower().rstrip('.')
        if cleaned.upper() in self.codes and len(cleaned) == 2:
            return cleaned.upper()
        return self._heading_lookup.get(cleaned)

    def assess_page(self, address: Optional[str]) -> PageAssessment:
        """
        Score how likely an address is a government business registration site.

        Points: government domain (up to 30), registration/tax/licensing terms
        in the address (up to 50), business query parameters (up to 20) and
        a region bonus (10). The total is capped at 100.
        """
        assessment = PageAssessment(address=address or '')
        if not address:
            assessment.reasons.append('Empty address')
            return assessment

        parsed = urlparse(address if '://' in address else f'https://{address}')
        host = (parsed.hostname or '').lower()
        full = address.lower()
        score = 0

        gov_score = 0
        if any(re.search(p, host) for p in GOVERNMENT_PATTERNS):
            gov_score = 30
        elif 'county' in host or 'city' in host or 'municipal' in host:
            gov_score = 20
        if gov_score:
            assessment.is_government = True
            score += gov_score
            assessment.reasons.append(f'Government domain detected ({gov_score} points)')

        term_score = 0
        matches = []
        for term in REGISTRATION_TERMS:
            if term in full:
                term_score += 15 if term in IMPORTANT_REGISTRATION_TERMS else 10
                matches.append(term)
        for term in TAX_TERMS:
            if re.search(rf'(?<![a-z]){term}(?![a-z])', full):
                term_score += 8
                matches.append(term)
        for term in LICENSING_TERMS:
            if term in full:
                term_score += 5
                matches.append(term)
        if len(matches) >= 3:
            term_score += 15
        elif len(matches) >= 2:
            term_score += 8
        term_score = min(term_score, 50)
        if term_score:
            score += term_score
            assessment.matched_terms = sorted(set(matches))
            assessment.reasons.append(f'Business registration patterns ({term_score} points)')

        query_score = 0
        for key, value in parse_qsl(parsed.query, keep_blank_values=True):
            key_lower, value_lower = key.lower(), value.lower()
            query_score += 5 * sum(1 for term in QUERY_TERMS if term in key_lower)
            query_score += 5 * sum(1 for term in QUERY_TERMS if term in value_lower)
            if key in ('type', 'entityType') and ('LLC' in value or 'Corp' in value):
                query_score += 10
        query_score = min(query_score, 20)
        if query_score:
            score += query_score
            assessment.reasons.append(f'Business-related query parameters ({query_score} points)')

        assessment.region = self.identify_from_address(address)
        if assessment.region and assessment.is_government:
            score += 10
            assessment.reasons.append('State-specific government site (10 points)')

        assessment.score = min(score, 100)
        return assessment


REGION_IDENTIFIER = RegionIdentifier()
