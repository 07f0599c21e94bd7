"""
Page Geometry
=============

Rectangles for controls and header candidates, expressed in page pixels
(origin at the top-left of the document, y grows downwards).

Rectangles are optional everywhere: when the host cannot report one the
element is still built, but it carries ``None`` and is treated as having
zero geometry by the section segmenter.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from .errors import GeometryUnavailable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned rectangle in page pixels."""
    left: float
    top: float
    width: float
    height: float

    @property
    def right(self) -> float:
        """X coordinate of right edge."""
        return self.left + self.width

    @property
    def bottom(self) -> float:
        """Y coordinate of bottom edge."""
        return self.top + self.height

    @property
    def center_y(self) -> float:
        return self.top + self.height / 2

    @property
    def area(self) -> float:
        return self.width * self.height

    @property
    def is_empty(self) -> bool:
        """Zero-sized rectangles are what hidden or detached nodes report."""
        return self.width <= 0 and self.height <= 0

    def to_dict(self) -> Dict[str, float]:
        return {
            'left': self.left,
            'top': self.top,
            'width': self.width,
            'height': self.height
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional['BoundingBox']:
        """
        Create from a host rectangle.

        Accepts either ``left/top/width/height`` or ``x/y/width/height``
        (the shape of a DOMRect). Returns None for missing or non-numeric input.
        """
        if not data:
            return None
        try:
            left = float(data.get('left', data.get('x', 0)))
            top = float(data.get('top', data.get('y', 0)))
            width = float(data.get('width', 0))
            height = float(data.get('height', 0))
        except (TypeError, ValueError):
            return None
        return cls(left=left, top=top, width=width, height=height)

    def vertical_distance_to(self, other: 'BoundingBox') -> float:
        """Distance from this box's bottom edge to the other's top edge (negative if overlapping)."""
        return other.top - self.bottom

    def union(self, other: 'BoundingBox') -> 'BoundingBox':
        """Smallest rectangle covering both boxes."""
        left = min(self.left, other.left)
        top = min(self.top, other.top)
        right = max(self.right, other.right)
        bottom = max(self.bottom, other.bottom)
        return BoundingBox(left=left, top=top, width=right - left, height=bottom - top)


GeometryProvider = Callable[[Any], Optional[Dict[str, Any]]]


def fetch_geometry(
    provider: GeometryProvider,
    node: Any,
    timeout_seconds: float
) -> Optional[BoundingBox]:
    """
    Ask the hosting collaborator for a node's rectangle, bounded by a timeout.

    The provider runs on a daemon thread; if it does not answer in time, raises,
    or answers with something that is not a rectangle, the lookup degrades to
    None and the pass continues.
    """
    outcome: Dict[str, Any] = {}

    def _worker():
        try:
            outcome['rect'] = provider(node)
        except Exception as e:
            outcome['error'] = e

    worker = threading.Thread(target=_worker, name="geometry-lookup", daemon=True)
    worker.start()
    worker.join(timeout=max(0.0, float(timeout_seconds)))

    try:
        if worker.is_alive():
            raise GeometryUnavailable(f"geometry lookup exceeded {timeout_seconds}s")
        if 'error' in outcome:
            raise GeometryUnavailable(f"geometry lookup failed: {outcome['error']}")
        box = BoundingBox.from_dict(outcome.get('rect'))
        if box is None:
            raise GeometryUnavailable("geometry lookup returned no rectangle")
        return box
    except GeometryUnavailable as e:
        logger.debug(f"Geometry unavailable: {e}")
        return None
