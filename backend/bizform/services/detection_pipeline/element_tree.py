"""
Host Element Tree
=================

The hosting collaborator serializes the live page into a plain tree:

    {
      "tag": "input",
      "attrs": {"type": "text", "id": "bizName", "name": "business_name"},
      "text": "",                      # own text, not including children
      "rect": {"left": 0, "top": 120, "width": 300, "height": 32},
      "style": {"display": "block", "font_size": 16, "font_weight": 400},
      "value": "", "checked": false,   # live state, optional
      "children": [...]
    }

Only the Element Model Builder reads these nodes; every later stage works on
the records the builder produces.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional

from .geometry import BoundingBox

WHITESPACE_RE = re.compile(r'\s+')

CONTROL_TAGS = {'input', 'select', 'textarea'}
CONTROL_ROLES = {'radio', 'checkbox', 'combobox', 'listbox', 'textbox', 'switch'}
# Text inside these is never part of a label
NON_TEXT_TAGS = {'script', 'style', 'noscript', 'template', 'option', 'optgroup'}


def clean_text(text: Optional[str]) -> str:
    """Collapse whitespace and strip."""
    if not text:
        return ''
    return WHITESPACE_RE.sub(' ', str(text)).strip()


def _to_float(value: Any, default: float = 0.0) -> float:
    if value is None:
        return default
    if isinstance(value, (int, float)):
        return float(value)
    match = re.match(r'\s*(-?[\d.]+)', str(value))
    if not match:
        return default
    try:
        return float(match.group(1))
    except ValueError:
        return default


@dataclass(eq=False)
class ElementNode:
    """One element of the host page."""
    tag: str
    attrs: Dict[str, str] = field(default_factory=dict)
    text: str = ''
    rect: Optional[BoundingBox] = None
    style: Dict[str, Any] = field(default_factory=dict)
    value: Optional[str] = None
    checked: Optional[bool] = None
    children: List['ElementNode'] = field(default_factory=list)

    # Assigned by DocumentIndex
    ordinal: int = -1
    parent: Optional['ElementNode'] = field(default=None, repr=False)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ElementNode':
        """Parse a host node (and its subtree). Unknown keys are ignored."""
        if not isinstance(data, dict):
            raise ValueError(f"element node must be an object, got {type(data).__name__}")

        attrs = {
            str(k).lower(): '' if v is None or v is True else str(v)
            for k, v in (data.get('attrs') or {}).items()
            if v is not False
        }
        value = data.get('value')
        checked = data.get('checked')
        return cls(
            tag=str(data.get('tag') or 'div').lower(),
            attrs=attrs,
            text=clean_text(data.get('text')),
            rect=BoundingBox.from_dict(data.get('rect')),
            style=dict(data.get('style') or {}),
            value=None if value is None else str(value),
            checked=None if checked is None else bool(checked),
            children=[cls.from_dict(child) for child in (data.get('children') or [])]
        )

    # === ATTRIBUTES ===

    def get(self, name: str, default: str = '') -> str:
        return self.attrs.get(name, default)

    def has(self, name: str) -> bool:
        return name in self.attrs

    @property
    def input_type(self) -> str:
        return self.get('type', 'text').lower() or 'text'

    @property
    def role(self) -> str:
        return self.get('role').lower()

    @property
    def class_names(self) -> str:
        return f"{self.get('class')} {self.get('id')}".lower()

    @property
    def is_control(self) -> bool:
        if self.tag in CONTROL_TAGS:
            return True
        if self.role in CONTROL_ROLES:
            return True
        return self.get('contenteditable').lower() in ('', 'true') and self.has('contenteditable')

    # === STYLE ===

    @property
    def display(self) -> str:
        return str(self.style.get('display', '')).lower()

    @property
    def font_size(self) -> float:
        return _to_float(self.style.get('font_size'))

    @property
    def font_weight(self) -> int:
        weight = self.style.get('font_weight')
        if isinstance(weight, str) and weight.lower() in ('bold', 'bolder'):
            return 700
        return int(_to_float(weight, 400))

    @property
    def spacing(self) -> float:
        return sum(
            _to_float(self.style.get(key))
            for key in ('margin_top', 'margin_bottom', 'padding_top', 'padding_bottom')
        )

    @property
    def is_self_hidden(self) -> bool:
        """Hidden by its own attributes or style (ancestors not considered)."""
        if self.has('hidden') or self.get('aria-hidden').lower() == 'true':
            return True
        if self.tag == 'input' and self.input_type == 'hidden':
            return True
        if self.display == 'none':
            return True
        if str(self.style.get('visibility', '')).lower() in ('hidden', 'collapse'):
            return True
        opacity = self.style.get('opacity')
        return opacity is not None and _to_float(opacity, 1.0) == 0.0

    # === TREE ===

    def iter(self) -> Iterator['ElementNode']:
        """Depth-first, document-order traversal including self."""
        stack = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    def ancestors(self) -> Iterator['ElementNode']:
        """Parents, innermost first."""
        node = self.parent
        while node is not None:
            yield node
            node = node.parent

    def closest(self, predicate: Callable[['ElementNode'], bool]) -> Optional['ElementNode']:
        for node in self.ancestors():
            if predicate(node):
                return node
        return None

    def previous_siblings(self) -> Iterator['ElementNode']:
        """Preceding siblings, nearest first."""
        if self.parent is None:
            return
        siblings = self.parent.children
        index = next(i for i, child in enumerate(siblings) if child is self)
        for sibling in reversed(siblings[:index]):
            yield sibling

    def contains(self, other: 'ElementNode') -> bool:
        return any(node is self for node in other.ancestors())

    def controls(self) -> List['ElementNode']:
        return [node for node in self.iter() if node is not self and node.is_control]

    def text_content(self, strip_controls: bool = False, strip_labels: bool = False) -> str:
        """
        Concatenated text of this subtree.

        Args:
            strip_controls: leave out the text of nested controls
            strip_labels: leave out nested <label> elements
        """
        parts = []
        stack = [self]
        while stack:
            node = stack.pop()
            if node is not self:
                if node.tag in NON_TEXT_TAGS:
                    continue
                if strip_controls and node.is_control:
                    continue
                if strip_labels and node.tag == 'label':
                    continue
            if node.text:
                parts.append(node.text)
            stack.extend(reversed(node.children))
        return clean_text(' '.join(parts))


class DocumentIndex:
    """Assigns ordinals and parent links, and indexes elements by id."""

    def __init__(self, root: ElementNode):
        self.root = root
        self.nodes: List[ElementNode] = []
        self.by_id: Dict[str, ElementNode] = {}
        self.labels_for: Dict[str, List[ElementNode]] = {}

        for node in root.iter():
            node.ordinal = len(self.nodes)
            self.nodes.append(node)
            for child in node.children:
                child.parent = node
            element_id = node.get('id')
            if element_id and element_id not in self.by_id:
                self.by_id[element_id] = node
            if node.tag == 'label' and node.get('for'):
                self.labels_for.setdefault(node.get('for'), []).append(node)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DocumentIndex':
        return cls(ElementNode.from_dict(data))

    def resolve_ids(self, id_list: str) -> List[ElementNode]:
        """Resolve a space-separated id reference list (aria-labelledby)."""
        return [self.by_id[i] for i in id_list.split() if i in self.by_id]

    def is_hidden(self, node: ElementNode) -> bool:
        if node.is_self_hidden:
            return True
        return any(a.is_self_hidden for a in node.ancestors())

    def body_font_size(self) -> float:
        """Most common font size among text-bearing nodes (16 if unknown)."""
        counts: Dict[float, int] = {}
        for node in self.nodes:
            if node.text and node.font_size > 0:
                counts[node.font_size] = counts.get(node.font_size, 0) + len(node.text)
        if not counts:
            return 16.0
        return max(counts.items(), key=lambda item: (item[1], -item[0]))[0]
