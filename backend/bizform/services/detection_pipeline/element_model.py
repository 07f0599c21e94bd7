"""
Element Model Builder
=====================

Turns the host element tree into FieldRecords and HeaderCandidates. This is
the only module that looks at raw tree shape.

Stages:
-------
1. Collect interactive controls in document order
2. Filter out hidden, disabled, decorative, login-only and internal controls
3. Resolve a label for each control through an ordered fallback chain
4. Merge radio/checkbox controls sharing a group key into one record
5. Collect header candidates for the section segmenter

Label Fallback Chain (first hit wins):
--------------------------------------
    label[for=id] -> aria-label / aria-labelledby -> wrapping <label>
    -> preceding sibling text -> container text -> placeholder/title
    -> humanized name or id

Tradeoffs:
----------
- Sibling and container text are only accepted between 3 and 99
  characters; longer text is usually instructions, not a label.
- Password controls are dropped unless the field or its form talks about
  creating an account. A registration portal's "choose a password" step is
  kept; a login box on the same page is not.
"""

import logging
import re
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from bizform.config import Config

from .element_tree import DocumentIndex, ElementNode, clean_text
from .geometry import BoundingBox, GeometryProvider, fetch_geometry
from .records import (
    Control, ControlKind, ElementModel, FieldLabel, FieldOption, FieldRecord,
    FieldType, HeaderCandidate, HeaderKind, LabelSource
)

logger = logging.getLogger(__name__)


# === TEXT PATTERNS ===

# Matched against name/id attributes
INTERNAL_ID_RE = re.compile(
    r'^(dbc-\d+|ds-\w+|required|optional|field\d+|field_\d+|input_\d+|__.*|_.*|temp.*|hidden.*|test.*|debug.*)$',
    re.IGNORECASE
)
# Matched against label text: only identifier-shaped words, so "Temporary
# Business Address" is a label and "temp_2" is not
INTERNAL_LABEL_RE = re.compile(
    r'^(dbc-\d+|ds-\w+|required|optional|field\d+|field_\d+|input_\d+|_\S*'
    r'|(temp|hidden|test|debug)([_\-\d]\S*)?)$',
    re.IGNORECASE
)
GENERIC_LABEL_RE = re.compile(
    r'^(field|input|select|checkbox|radio|option|item|value|data|entry|text|submit|button|click)$',
    re.IGNORECASE
)
LOGIN_RE = re.compile(r'\b(login|log\s*in|signin|sign\s*in|username|user\s*name|remember\s*me|forgot|reset)\b', re.IGNORECASE)
CREDENTIAL_CREATION_RE = re.compile(
    r'\b(create|new|register|choose|select|confirm)\s*(your|a|an)?\s*(username|password|account)\b'
    r'|\bsign\s*up\b|\bcreate\s*(an\s*)?account\b',
    re.IGNORECASE
)
SEARCH_RE = re.compile(r'\b(search|looking\s*for|can\'t\s*find|help\s*me\s*find)\b', re.IGNORECASE)
BUSINESS_CONTEXT_RE = re.compile(r'\b(business|company|ein|tax|entity|llc|corp|corporation|organization)\b', re.IGNORECASE)
BOOLEAN_LABEL_RE = re.compile(
    r'\?|\b(agree|consent|confirm|certify|acknowledge|attest|accept)\b|^(do|does|is|are|have|has|will|would|should|can)\b',
    re.IGNORECASE
)
REQUIRED_MARKER_RE = re.compile(r'(\s*\(required\)|\s*\(optional\)|\s*\*+|\s*:)+\s*$', re.IGNORECASE)
CAMEL_RE = re.compile(r'(?<=[a-z0-9])(?=[A-Z])')

SECTION_CLASS_RE = re.compile(r'\b(section|panel|group|card|step|fieldset|form-section)\b')
HEADER_CLASS_RE = re.compile(r'(header|heading|title|section|group|legend)')
CHROME_CLASS_RE = re.compile(r'(page-header|site-header|navbar|\bnav\b|brand|masthead|breadcrumb|site-footer)')

HEADING_TAGS = {'h1', 'h2', 'h3', 'h4', 'h5', 'h6'}
CAPTION_TAGS = {'legend', 'caption'}
CHROME_TAGS = {'header', 'nav', 'footer'}
CHROME_ROLES = {'banner', 'navigation', 'contentinfo'}
SIBLING_LABEL_TAGS = {'label', 'span', 'div', 'p', 'strong', 'b', 'dt', 'td', 'th', 'em'}
GROUP_HEADING_TAGS = HEADING_TAGS | {'label', 'strong', 'b', 'legend', 'p', 'span', 'div'}
BLOCK_DISPLAYS = {'block', 'flex', 'grid', 'table', 'list-item'}
BUTTON_TYPES = {'submit', 'reset', 'button', 'image'}

INPUT_KINDS: Dict[str, ControlKind] = {
    'text': ControlKind.TEXT,
    'email': ControlKind.EMAIL,
    'tel': ControlKind.TEL,
    'number': ControlKind.NUMBER,
    'range': ControlKind.NUMBER,
    'date': ControlKind.DATE,
    'datetime-local': ControlKind.DATE,
    'month': ControlKind.DATE,
    'week': ControlKind.DATE,
    'url': ControlKind.URL,
    'password': ControlKind.PASSWORD,
    'file': ControlKind.FILE,
    'radio': ControlKind.RADIO,
    'checkbox': ControlKind.CHECKBOX,
}
ROLE_KINDS: Dict[str, ControlKind] = {
    'radio': ControlKind.RADIO,
    'checkbox': ControlKind.CHECKBOX,
    'switch': ControlKind.CHECKBOX,
    'combobox': ControlKind.SELECT,
    'listbox': ControlKind.SELECT,
    'textbox': ControlKind.TEXT,
}
FIELD_TYPES: Dict[ControlKind, FieldType] = {
    ControlKind.TEXT: FieldType.TEXT,
    ControlKind.EMAIL: FieldType.EMAIL,
    ControlKind.TEL: FieldType.TEL,
    ControlKind.NUMBER: FieldType.NUMBER,
    ControlKind.DATE: FieldType.DATE,
    ControlKind.URL: FieldType.URL,
    ControlKind.TEXTAREA: FieldType.TEXTAREA,
    ControlKind.SELECT: FieldType.SELECT,
    ControlKind.PASSWORD: FieldType.PASSWORD,
    ControlKind.FILE: FieldType.FILE,
}


def humanize(identifier: str) -> str:
    """'businessName' / 'business_name[0]' -> 'Business Name'."""
    if not identifier:
        return ''
    text = CAMEL_RE.sub(' ', identifier)
    text = re.sub(r'[_\-.\[\]:]+', ' ', text)
    text = re.sub(r'\b\d+\b', ' ', text)
    return clean_text(text).title()


def clean_label(text: str) -> str:
    """Strip required markers, trailing colons and whitespace."""
    text = clean_text(text)
    return REQUIRED_MARKER_RE.sub('', text).strip()


def _meaningful(text: str, min_length: int = 3, max_length: int = 99) -> bool:
    return min_length <= len(text) <= max_length


@dataclass
class _BuildState:
    """Caches and stop signal for one build() call; never shared between passes."""
    should_stop: Optional[Callable[[], bool]] = None
    geometry: Dict[int, Optional[BoundingBox]] = field(default_factory=dict)
    forms: Dict[int, Tuple[str, bool]] = field(default_factory=dict)
    stopped: bool = False

    def out_of_time(self) -> bool:
        """Poll the stop signal; once it fires it stays fired."""
        if not self.stopped and self.should_stop is not None and self.should_stop():
            self.stopped = True
        return self.stopped


class ElementModelBuilder:
    """
    Builds the element model for one detection pass.

    Example usage:

        builder = ElementModelBuilder()
        model = builder.build(tree_dict, page_title="Register a Business")
        for record in model.fields:
            print(record.label.text, record.field_type.value)
    """

    # Header candidates longer than this are paragraphs, not headers
    MAX_HEADER_TEXT = 120
    # Ancestors searched when an internal-looking label is replaced
    INTERNAL_LABEL_SEARCH_DEPTH = 3

    def __init__(
        self,
        geometry_provider: Optional[GeometryProvider] = None,
        geometry_timeout: Optional[float] = None,
        max_controls: Optional[int] = None,
        max_fields: Optional[int] = None
    ):
        """
        Args:
            geometry_provider: Optional host callback returning a rect for a node
                whose serialized rect is missing
            geometry_timeout: Seconds to wait for the provider per lookup
            max_controls: Stop collecting after this many controls
            max_fields: Stop building after this many records
        """
        self.geometry_provider = geometry_provider
        self.geometry_timeout = (
            geometry_timeout if geometry_timeout is not None else Config.GEOMETRY_TIMEOUT_SECONDS
        )
        self.max_controls = max_controls or Config.MAX_CONTROLS
        self.max_fields = max_fields or Config.MAX_FIELDS

    def build(
        self,
        tree: Union[Dict[str, Any], ElementNode, DocumentIndex],
        page_title: str = '',
        should_stop: Optional[Callable[[], bool]] = None
    ) -> ElementModel:
        """
        Build field records and header candidates from an element tree.

        Args:
            tree: Serialized host tree, a parsed root node, or an index
            page_title: Document title, used for the default section name
            should_stop: Polled between controls and before every host geometry
                lookup; when it returns True the
                model built so far is returned with ``truncated`` set

        Returns:
            ElementModel with records in document order
        """
        if isinstance(tree, DocumentIndex):
            index = tree
        elif isinstance(tree, ElementNode):
            index = DocumentIndex(tree)
        else:
            index = DocumentIndex.from_dict(tree)

        diagnostics: List[str] = []
        truncated = False
        state = _BuildState(should_stop=should_stop)

        # === STAGE 1: COLLECT CONTROLS ===
        control_nodes = []
        for node in index.nodes:
            if not node.is_control or node.closest(lambda a: a.is_control):
                continue
            if len(control_nodes) >= self.max_controls:
                truncated = True
                diagnostics.append(f"Control limit reached ({self.max_controls}); remaining controls ignored")
                break
            control_nodes.append(node)

        # === STAGE 2-3: FILTER AND LABEL ===
        singles: List[Tuple[Control, FieldLabel]] = []
        groups: Dict[Tuple[str, str, Optional[int]], List[Tuple[ElementNode, Control, FieldLabel]]] = {}
        has_password = False
        budget_noted = False

        for node in control_nodes:
            if state.out_of_time():
                truncated = True
                diagnostics.append("Time budget exceeded while building controls")
                budget_noted = True
                break

            kind = self._control_kind(node)
            if kind is None or not self._is_interactive(index, node):
                continue
            if kind == ControlKind.PASSWORD:
                has_password = True

            label = self.resolve_label(index, node, kind)
            label = self._replace_internal_label(node, label)
            if label is None:
                logger.debug(f"Skipping internal control #{node.ordinal}")
                continue

            control = self._make_control(index, node, kind, state)
            if not self._is_user_facing(node, control, label, state):
                continue

            if kind in (ControlKind.RADIO, ControlKind.CHECKBOX) and control.group_key:
                form = node.closest(lambda a: a.tag == 'form')
                key = (kind.value, control.group_key, form.ordinal if form else None)
                groups.setdefault(key, []).append((node, control, label))
            else:
                singles.append((control, label))

        # === STAGE 4: GROUP ===
        records: List[FieldRecord] = []
        for control, label in singles:
            records.append(self._single_record(index, control, label))
        for members in groups.values():
            records.append(self._group_record(index, members))

        records.sort(key=lambda r: r.ordinal)
        if len(records) > self.max_fields:
            truncated = True
            diagnostics.append(f"Field limit reached ({self.max_fields}); {len(records) - self.max_fields} fields dropped")
            records = records[:self.max_fields]
        records = self._unique_ids(records)

        # === STAGE 5: HEADER CANDIDATES ===
        headers = self._collect_headers(index, state)
        form_bounds = self._form_bounds(index, records, state)
        if state.stopped and not budget_noted:
            truncated = True
            diagnostics.append("Time budget exceeded; remaining geometry lookups skipped")

        model = ElementModel(
            fields=tuple(records),
            headers=tuple(headers),
            page_title=clean_text(page_title),
            form_bounds=form_bounds,
            body_font_size=index.body_font_size(),
            controls_seen=len(control_nodes),
            truncated=truncated,
            has_password=has_password,
            diagnostics=tuple(diagnostics)
        )
        logger.info(
            f"Built element model: {len(control_nodes)} controls, "
            f"{len(records)} fields, {len(headers)} header candidates"
        )
        return model

    # ========================================================================
    # Controls
    # ========================================================================

    def _control_kind(self, node: ElementNode) -> Optional[ControlKind]:
        if node.tag == 'input':
            input_type = node.input_type
            if input_type in BUTTON_TYPES or input_type in ('hidden', 'search'):
                return None
            return INPUT_KINDS.get(input_type, ControlKind.TEXT)
        if node.tag == 'select':
            return ControlKind.SELECT
        if node.tag == 'textarea':
            return ControlKind.TEXTAREA
        if node.role in ROLE_KINDS:
            return ROLE_KINDS[node.role]
        if node.has('contenteditable'):
            return ControlKind.TEXTAREA
        return None

    def _is_interactive(self, index: DocumentIndex, node: ElementNode) -> bool:
        if index.is_hidden(node):
            return False
        if node.has('disabled') or node.get('aria-disabled').lower() == 'true':
            return False
        disabled_fieldset = node.closest(lambda a: a.tag == 'fieldset' and a.has('disabled'))
        return disabled_fieldset is None

    def _make_control(self, index: DocumentIndex, node: ElementNode, kind: ControlKind, state: _BuildState) -> Control:
        value = node.value if node.value is not None else node.get('value')
        checked = node.checked if node.checked is not None else node.has('checked')
        if kind == ControlKind.SELECT:
            selected = [o for o in self._select_options(node) if o.checked]
            value = selected[0].value if selected else value

        group_key = None
        if kind in (ControlKind.RADIO, ControlKind.CHECKBOX):
            group_key = node.get('name') or None
            if group_key is None:
                group = node.closest(lambda a: a.role in ('radiogroup', 'group'))
                if group is not None:
                    group_key = group.get('id') or f"group-{group.ordinal}"

        return Control(
            ordinal=node.ordinal,
            kind=kind,
            name=node.get('name'),
            element_id=node.get('id'),
            placeholder=clean_text(node.get('placeholder')),
            title=clean_text(node.get('title')),
            value=value or '',
            autocomplete=node.get('autocomplete'),
            required=node.has('required') or node.get('aria-required').lower() == 'true',
            checked=bool(checked),
            visible=True,
            bbox=self._geometry(node, state),
            group_key=group_key,
            ancestors=tuple(a.ordinal for a in node.ancestors())
        )

    def _geometry(self, node: ElementNode, state: _BuildState) -> Optional[BoundingBox]:
        if node.ordinal in state.geometry:
            return state.geometry[node.ordinal]
        box = node.rect
        # The host is only asked while the pass still has time left
        if box is None and self.geometry_provider is not None and not state.out_of_time():
            box = fetch_geometry(self.geometry_provider, node, self.geometry_timeout)
        if box is not None and box.is_empty:
            box = None
        state.geometry[node.ordinal] = box
        return box

    def _select_options(self, node: ElementNode) -> List[FieldOption]:
        options = []
        for child in node.iter():
            if child.tag != 'option' and child.role != 'option':
                continue
            label = clean_text(child.text_content()) or child.get('label')
            value = child.get('value', label)
            selected = child.checked if child.checked is not None else child.has('selected')
            options.append(FieldOption(value=value, label=label, checked=bool(selected)))
        return options

    # ========================================================================
    # Label resolution
    # ========================================================================

    def resolve_label(self, index: DocumentIndex, node: ElementNode, kind: Optional[ControlKind] = None) -> FieldLabel:
        """Resolve a control's label through the fallback chain."""
        # 1. Explicit association
        element_id = node.get('id')
        if element_id:
            for label_node in index.labels_for.get(element_id, []):
                text = clean_label(label_node.text_content(strip_controls=True))
                if text:
                    return FieldLabel(text, LabelSource.EXPLICIT)

        # 2. Accessibility label
        aria = clean_label(node.get('aria-label'))
        if aria:
            return FieldLabel(aria, LabelSource.ARIA)
        if node.get('aria-labelledby'):
            text = clean_label(' '.join(
                n.text_content(strip_controls=True) for n in index.resolve_ids(node.get('aria-labelledby'))
            ))
            if text:
                return FieldLabel(text, LabelSource.ARIA)

        # 3. Wrapping label with nested controls stripped
        wrapper = node.closest(lambda a: a.tag == 'label')
        if wrapper is not None:
            text = clean_label(wrapper.text_content(strip_controls=True))
            if text:
                return FieldLabel(text, LabelSource.EXPLICIT)

        # 4. Nearest preceding sibling text
        text = self._sibling_text(node)
        if text:
            return FieldLabel(text, LabelSource.SIBLING)

        # 5. Nearest container text with nested controls stripped
        text = self._container_text(node)
        if text:
            return FieldLabel(text, LabelSource.CONTAINER)

        # 6. Placeholder / title
        for attr in ('placeholder', 'title'):
            text = clean_label(node.get(attr))
            if text:
                return FieldLabel(text, LabelSource.PLACEHOLDER)

        # 7. Derived from name or id
        derived = humanize(node.get('name') or node.get('id'))
        if not derived:
            derived = f"{(kind.value if kind else 'text').title()} Field"
        return FieldLabel(derived, LabelSource.DERIVED)

    def _sibling_text(self, node: ElementNode) -> str:
        targets = [node]
        # <div><span>Label</span></div><div><input></div> puts the text one level up
        if node.parent is not None and len(node.parent.controls()) == 1:
            targets.append(node.parent)

        for target in targets:
            for sibling in target.previous_siblings():
                if sibling.is_control or sibling.controls():
                    break
                if sibling.tag not in SIBLING_LABEL_TAGS:
                    continue
                text = clean_label(sibling.text_content())
                if _meaningful(text):
                    return text
                if text:
                    break
        return ''

    def _container_text(self, node: ElementNode) -> str:
        container = node.parent
        depth = 0
        while container is not None and depth < 2 and container.tag != 'form':
            if len(container.controls()) > 1:
                break
            text = clean_label(container.text_content(strip_controls=True))
            if _meaningful(text):
                return text
            container = container.parent
            depth += 1
        return ''

    def _replace_internal_label(self, node: ElementNode, label: FieldLabel) -> Optional[FieldLabel]:
        """Swap an internal-id label for nearby ancestor text, or None to drop the control."""
        raw = label.text.strip()
        internal = bool(INTERNAL_LABEL_RE.match(raw)) or (
            label.is_derived and (
                INTERNAL_ID_RE.match(node.get('name')) or INTERNAL_ID_RE.match(node.get('id'))
            )
        )
        if not internal:
            return label

        ancestor = node.parent
        for _ in range(self.INTERNAL_LABEL_SEARCH_DEPTH):
            if ancestor is None:
                break
            text = clean_label(ancestor.text_content(strip_controls=True, strip_labels=True))
            if 3 < len(text) < 200 and not INTERNAL_LABEL_RE.match(text) \
                    and not LOGIN_RE.search(text) and not SEARCH_RE.search(text):
                return FieldLabel(text, LabelSource.CONTAINER)
            ancestor = ancestor.parent

        fallback = clean_label(node.get('placeholder') or node.get('title') or node.get('aria-label'))
        if fallback:
            return FieldLabel(fallback, LabelSource.PLACEHOLDER)
        return None

    def _option_label(self, index: DocumentIndex, node: ElementNode) -> str:
        """Label of one radio/checkbox within a group (its own label, or the next text)."""
        label = self.resolve_label(index, node)
        if label.source in (LabelSource.EXPLICIT, LabelSource.ARIA):
            return label.text
        if node.parent is not None:
            siblings = node.parent.children
            position = next(i for i, child in enumerate(siblings) if child is node)
            for sibling in siblings[position + 1:]:
                if sibling.is_control or sibling.controls():
                    break
                text = clean_label(sibling.text_content())
                if text:
                    return text
        return node.get('value') or label.text

    # ========================================================================
    # Filtering
    # ========================================================================

    def _form_info(self, node: ElementNode, state: _BuildState) -> Tuple[str, bool]:
        """(text, has_password) of the form enclosing a node."""
        form = node.closest(lambda a: a.tag == 'form')
        if form is None:
            return '', False
        if form.ordinal not in state.forms:
            has_password = any(
                n.tag == 'input' and n.input_type == 'password' for n in form.iter()
            )
            state.forms[form.ordinal] = (form.text_content(), has_password)
        return state.forms[form.ordinal]

    def _is_user_facing(self, node: ElementNode, control: Control, label: FieldLabel, state: _BuildState) -> bool:
        all_text = ' '.join([label.text, control.name, control.element_id, control.placeholder]).lower()
        form_text, form_has_password = self._form_info(node, state)

        if control.kind == ControlKind.PASSWORD:
            if CREDENTIAL_CREATION_RE.search(all_text) or CREDENTIAL_CREATION_RE.search(form_text):
                return True
            logger.debug(f"Skipping password control #{control.ordinal}: login context")
            return False

        if LOGIN_RE.search(all_text) and not CREDENTIAL_CREATION_RE.search(all_text):
            logger.debug(f"Skipping login control: {label.text!r}")
            return False

        if SEARCH_RE.search(all_text):
            logger.debug(f"Skipping search control: {label.text!r}")
            return False

        if GENERIC_LABEL_RE.match(label.text.strip()) and not control.placeholder and not control.title:
            logger.debug(f"Skipping control with generic label: {label.text!r}")
            return False

        if (control.kind == ControlKind.EMAIL or 'email' in all_text) and form_has_password \
                and not BUSINESS_CONTEXT_RE.search(form_text) \
                and not CREDENTIAL_CREATION_RE.search(form_text):
            logger.debug(f"Skipping email control in login form: {label.text!r}")
            return False

        return True

    # ========================================================================
    # Records
    # ========================================================================

    def _single_record(self, index: DocumentIndex, control: Control, label: FieldLabel) -> FieldRecord:
        node = index.nodes[control.ordinal]
        options: Tuple[FieldOption, ...] = ()

        if control.kind == ControlKind.SELECT:
            options = tuple(self._select_options(node))
            field_type = FieldType.MULTI_SELECT if node.has('multiple') else FieldType.SELECT
        elif control.kind == ControlKind.CHECKBOX:
            field_type = self._single_choice_type(FieldType.MULTI_SELECT, label)
            options = (FieldOption(value=control.value or 'on', label=label.text, checked=control.checked),)
        elif control.kind == ControlKind.RADIO:
            field_type = self._single_choice_type(FieldType.SINGLE_SELECT, label)
            options = (FieldOption(value=control.value or 'on', label=label.text, checked=control.checked),)
        else:
            field_type = FIELD_TYPES.get(control.kind, FieldType.TEXT)

        return FieldRecord(
            field_id=control.element_id or control.name or f"field_{control.ordinal}",
            label=label,
            field_type=field_type,
            controls=(control,),
            options=options,
            bbox=control.bbox,
            required=control.required
        )

    @staticmethod
    def _single_choice_type(group_type: FieldType, label: FieldLabel) -> FieldType:
        """A lone choice control asking a question or for consent is a boolean field."""
        if BOOLEAN_LABEL_RE.search(label.text):
            return FieldType.BOOLEAN
        return group_type

    def _group_record(
        self,
        index: DocumentIndex,
        members: List[Tuple[ElementNode, Control, FieldLabel]]
    ) -> FieldRecord:
        nodes = [m[0] for m in members]
        controls = tuple(m[1] for m in members)
        first = controls[0]

        if len(members) == 1:
            return self._single_record(index, first, members[0][2])

        label = self.resolve_group_label(index, nodes, first.group_key or '')
        options = tuple(
            FieldOption(
                value=control.value or self._option_label(index, node),
                label=self._option_label(index, node),
                checked=control.checked
            )
            for node, control in zip(nodes, controls)
        )
        field_type = FieldType.SINGLE_SELECT if first.kind == ControlKind.RADIO else FieldType.MULTI_SELECT

        boxes = [c.bbox for c in controls if c.bbox is not None]
        bbox = None
        for box in boxes:
            bbox = box if bbox is None else bbox.union(box)

        return FieldRecord(
            field_id=f"group_{first.group_key}",
            label=label,
            field_type=field_type,
            controls=controls,
            options=options,
            bbox=bbox,
            required=any(c.required for c in controls)
        )

    def resolve_group_label(self, index: DocumentIndex, nodes: List[ElementNode], group_key: str) -> FieldLabel:
        """Resolve the label of a radio/checkbox group."""
        def _contains_all(ancestor: ElementNode) -> bool:
            return all(ancestor.contains(n) for n in nodes)

        # 1. Explicit caption element
        fieldset = nodes[0].closest(lambda a: a.tag == 'fieldset' and _contains_all(a))
        if fieldset is not None:
            for child in fieldset.children:
                if child.tag == 'legend':
                    text = clean_label(child.text_content(strip_controls=True))
                    if text:
                        return FieldLabel(text, LabelSource.EXPLICIT)

        # 2. Accessibility group reference
        group = nodes[0].closest(lambda a: a.role in ('radiogroup', 'group') and _contains_all(a))
        if group is not None:
            if group.get('aria-labelledby'):
                text = clean_label(' '.join(
                    n.text_content(strip_controls=True) for n in index.resolve_ids(group.get('aria-labelledby'))
                ))
                if text:
                    return FieldLabel(text, LabelSource.ARIA)
            if group.get('aria-label'):
                return FieldLabel(clean_label(group.get('aria-label')), LabelSource.ARIA)

        # 3. Preceding text near the group
        common = nodes[0].parent
        while common is not None and not _contains_all(common):
            common = common.parent
        if common is not None:
            first = nodes[0]
            nearest = ''
            for node in common.iter():
                if node is first or node.ordinal > first.ordinal:
                    break
                if node.is_control:
                    # text before another control belongs to that control
                    nearest = ''
                    continue
                if node.contains(first) or node.controls():
                    continue
                if node.tag in GROUP_HEADING_TAGS and not (node.tag == 'label' and node.get('for')):
                    text = clean_label(node.text_content())
                    if _meaningful(text):
                        nearest = text
            if nearest:
                return FieldLabel(nearest, LabelSource.SIBLING)

            for sibling in common.previous_siblings():
                if sibling.is_control or sibling.controls():
                    break
                text = clean_label(sibling.text_content())
                if _meaningful(text):
                    return FieldLabel(text, LabelSource.SIBLING)
                if text:
                    break

            text = clean_label(common.text_content(strip_controls=True, strip_labels=True))
            if _meaningful(text):
                return FieldLabel(text, LabelSource.CONTAINER)

        # 4. Derived from the group key
        return FieldLabel(humanize(group_key) or "Choice Group", LabelSource.DERIVED)

    @staticmethod
    def _unique_ids(records: List[FieldRecord]) -> List[FieldRecord]:
        seen: Dict[str, int] = {}
        unique = []
        for record in records:
            count = seen.get(record.field_id, 0)
            seen[record.field_id] = count + 1
            if count:
                record = replace(record, field_id=f"{record.field_id}_{record.ordinal}")
            unique.append(record)
        return unique

    # ========================================================================
    # Header candidates
    # ========================================================================

    def _collect_headers(self, index: DocumentIndex, state: _BuildState) -> List[HeaderCandidate]:
        headers = []
        claimed = set()

        for node in index.nodes:
            if node.ordinal in claimed or index.is_hidden(node) or node.is_control:
                continue
            if node.closest(lambda a: a.ordinal in claimed or a.is_control or a.tag in ('label', 'select', 'button', 'a')):
                continue

            if node.tag in HEADING_TAGS or node.role == 'heading':
                kind = HeaderKind.HEADING
            elif node.tag in CAPTION_TAGS:
                kind = HeaderKind.CAPTION
            elif node.text and not node.controls() and node.tag not in ('label', 'option', 'a', 'button', 'li'):
                kind = HeaderKind.STRUCTURAL if self._heads_container(node) else HeaderKind.STYLED
            else:
                continue

            text = clean_label(node.text_content(strip_controls=True))
            if not text or len(text) > self.MAX_HEADER_TEXT:
                continue

            container = self._section_container(node, kind)
            if kind == HeaderKind.STYLED and container is not None:
                kind = HeaderKind.STRUCTURAL

            headers.append(HeaderCandidate(
                text=text,
                kind=kind,
                ordinal=node.ordinal,
                bbox=self._geometry(node, state),
                container=container,
                font_size=node.font_size,
                font_weight=node.font_weight,
                spacing=node.spacing,
                block_level=node.display in BLOCK_DISPLAYS or kind != HeaderKind.STYLED,
                class_hint=node.class_names,
                in_page_chrome=self._in_page_chrome(node),
                inside_form=node.closest(lambda a: a.tag == 'form') is not None,
                control_count=len(node.controls())
            ))
            claimed.update(n.ordinal for n in node.iter())

        return headers

    def _heads_container(self, node: ElementNode) -> bool:
        return self._section_container(node, HeaderKind.STYLED) is not None and (
            bool(HEADER_CLASS_RE.search(node.class_names)) or node.tag in ('strong', 'b')
        )

    def _section_container(self, node: ElementNode, kind: HeaderKind) -> Optional[int]:
        """Ordinal of the section container this node heads, if it heads one."""
        if kind == HeaderKind.CAPTION and node.parent is not None:
            return node.parent.ordinal

        candidate = node.parent
        for _ in range(2):
            if candidate is None or candidate.tag in ('form', 'body', 'html', 'main'):
                return None
            is_section = candidate.tag in ('fieldset', 'section') or bool(SECTION_CLASS_RE.search(candidate.class_names))
            if is_section and candidate.controls():
                # The header must come before every control of the container
                first_control = candidate.controls()[0]
                if node.ordinal < first_control.ordinal:
                    return candidate.ordinal
                return None
            candidate = candidate.parent
        return None

    @staticmethod
    def _in_page_chrome(node: ElementNode) -> bool:
        for element in [node] + list(node.ancestors()):
            if element.tag in CHROME_TAGS or element.role in CHROME_ROLES:
                return True
            if CHROME_CLASS_RE.search(element.class_names):
                return True
        return False

    def _form_bounds(self, index: DocumentIndex, records: List[FieldRecord], state: _BuildState) -> Optional[BoundingBox]:
        bounds = None
        forms = [n for n in index.nodes if n.tag == 'form']
        for form in forms:
            box = self._geometry(form, state)
            if box is not None and any(form.ordinal in r.ancestors for r in records):
                bounds = box if bounds is None else bounds.union(box)
        if bounds is not None:
            return bounds
        for record in records:
            if record.bbox is not None:
                bounds = record.bbox if bounds is None else bounds.union(record.bbox)
        return bounds
