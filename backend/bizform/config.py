"""
Configuration management for the Business Registration Form Detector service.
Loads pass bounds, knowledge locations and API settings from environment variables.
"""
import os
from dataclasses import dataclass
from typing import Optional
from dotenv import load_dotenv

# Load environment variables from .env file if it exists
load_dotenv()


@dataclass(frozen=True)
class DetectionThresholds:
    """
    Tunable constants used by the detection stages.

    The prominence and gap values were chosen empirically against real state
    registration portals; treat them as configuration rather than contract.
    """
    # Field classifier scoring
    label_hit_weight: int = 40
    attribute_hit_weight: int = 20
    multi_hit_bonus: int = 5
    multi_hit_bonus_cap: int = 20
    acceptance_threshold: int = 20
    exact_match_boost: int = 15
    required_boost: int = 5
    explicit_label_boost: int = 5
    domain_fallback_confidence: int = 50
    special_rule_confidence: int = 85
    certification_confidence: int = 90
    region_specific_boost: int = 10

    # Visual prominence of header candidates
    prominence_threshold: int = 3
    font_size_ratio: float = 1.1
    bold_font_weight: int = 400
    spacing_px: float = 10.0

    # Section validity and banding
    header_lookahead_px: float = 200.0
    max_header_gap_px: float = 150.0
    min_fields_per_section: int = 2
    page_chrome_top_px: float = 200.0
    cluster_gap_px: float = 80.0
    min_fields_for_clustering: int = 4
    min_cluster_size: int = 2
    cluster_padding_px: float = 30.0

    # Readiness gates
    min_classification_rate: float = 60.0
    min_critical_fields: int = 2
    min_categories: int = 3
    min_average_confidence: float = 70.0
    min_validation_score: float = 70.0
    low_confidence_threshold: int = 70
    required_coverage_ratio: float = 0.8


class Config:
    """Configuration class for detection bounds and service settings."""

    # Pattern knowledge (defaults to the JSON documents shipped in the package)
    KNOWLEDGE_DIR: Optional[str] = os.getenv('KNOWLEDGE_DIR')

    # Pass bounds
    PASS_TIME_BUDGET_SECONDS: float = float(os.getenv('PASS_TIME_BUDGET_SECONDS', '5.0'))
    MAX_CONTROLS: int = int(os.getenv('MAX_CONTROLS', '500'))
    MAX_FIELDS: int = int(os.getenv('MAX_FIELDS', '300'))
    GEOMETRY_TIMEOUT_SECONDS: float = float(os.getenv('GEOMETRY_TIMEOUT_SECONDS', '0.25'))

    # Page contexts held by the pass coordinator before idle ones are evicted
    MAX_PAGE_CONTEXTS: int = int(os.getenv('MAX_PAGE_CONTEXTS', '1000'))

    # Classification tuning
    ACCEPTANCE_THRESHOLD: int = int(os.getenv('ACCEPTANCE_THRESHOLD', '20'))
    PROMINENCE_THRESHOLD: int = int(os.getenv('PROMINENCE_THRESHOLD', '3'))
    CLUSTER_GAP_PX: float = float(os.getenv('CLUSTER_GAP_PX', '80'))

    # Logging
    LOG_LEVEL: str = os.getenv('LOG_LEVEL', 'INFO').upper()

    # API Settings
    API_HOST: str = os.getenv('API_HOST', '0.0.0.0')
    API_PORT: int = int(os.getenv('API_PORT', '8000'))
    CORS_ORIGINS: list = os.getenv('CORS_ORIGINS', 'http://localhost:3000').split(',')

    @classmethod
    def validate(cls) -> bool:
        """
        Validate that configured bounds are usable.
        """
        if cls.PASS_TIME_BUDGET_SECONDS <= 0:
            raise ValueError("PASS_TIME_BUDGET_SECONDS must be greater than zero.")

        if cls.MAX_CONTROLS <= 0 or cls.MAX_FIELDS <= 0:
            raise ValueError("MAX_CONTROLS and MAX_FIELDS must be greater than zero.")

        if cls.GEOMETRY_TIMEOUT_SECONDS < 0:
            raise ValueError("GEOMETRY_TIMEOUT_SECONDS cannot be negative.")

        if cls.MAX_PAGE_CONTEXTS <= 0:
            raise ValueError("MAX_PAGE_CONTEXTS must be greater than zero.")

        if not 0 <= cls.ACCEPTANCE_THRESHOLD <= 100:
            raise ValueError("ACCEPTANCE_THRESHOLD must be between 0 and 100.")

        if cls.KNOWLEDGE_DIR and not os.path.isdir(cls.KNOWLEDGE_DIR):
            raise ValueError(f"KNOWLEDGE_DIR does not exist: {cls.KNOWLEDGE_DIR}")
        return True

    @classmethod
    def get_thresholds(cls) -> DetectionThresholds:
        """
        Get the detection thresholds with environment overrides applied.
        """
        return DetectionThresholds(
            acceptance_threshold=cls.ACCEPTANCE_THRESHOLD,
            prominence_threshold=cls.PROMINENCE_THRESHOLD,
            cluster_gap_px=cls.CLUSTER_GAP_PX
        )
