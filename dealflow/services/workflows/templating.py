"""
Template rendering for workflow emails.

Grammar: ``{{ path }}`` where ``path`` is a dot-separated sequence of
identifiers (``patient.first_name``). There are no expressions, filters,
conditionals or loops. Anything that is not a well-formed token is copied to
the output verbatim.

A path that cannot be resolved renders as the empty string, so a partially
filled record never blocks message generation.
"""

import html
import os
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict, Iterator, List, Mapping, Optional, Union

import yaml
from pydantic import BaseModel

from dealflow.schemas.action_config import DraftEmailConfig
from dealflow.schemas.dispatch import RenderedEmail

OPEN = "{{"
CLOSE = "}}"

_PATH_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*(?:\.[A-Za-z_][A-Za-z0-9_]*)*")
_LINE_SPLIT_RE = re.compile(r"\r?\n")

CATALOG_PATH = os.path.join(os.path.dirname(__file__), "template_variables.yaml")

Context = Union[Mapping[str, Any], BaseModel]

_MISSING = object()


@dataclass(frozen=True)
class TemplateSegment:
    """A slice of a template: literal text, or a token when ``path`` is set."""

    text: str
    path: Optional[str] = None


def _scan(template: str) -> Iterator[TemplateSegment]:
    pos = 0
    literal_start = 0
    while True:
        start = template.find(OPEN, pos)
        if start == -1:
            break
        end = template.find(CLOSE, start + len(OPEN))
        if end == -1:
            break
        path = template[start + len(OPEN) : end].strip()
        if _PATH_RE.fullmatch(path):
            if start > literal_start:
                yield TemplateSegment(template[literal_start:start])
            token_end = end + len(CLOSE)
            yield TemplateSegment(template[start:token_end], path)
            pos = literal_start = token_end
        else:
            # Not a token; a later "{{" may still open one.
            pos = start + 1
    if literal_start < len(template):
        yield TemplateSegment(template[literal_start:])


def split_tokens(template: str) -> List[TemplateSegment]:
    """
    Split a template into literal and token segments.

    Used by authoring surfaces to highlight recognised tokens.
    """
    return list(_scan(template or ""))


def resolve_path(context: Context, path: str) -> Any:
    """
    Walk ``context`` along the dotted ``path``.

    Returns the sentinel ``_MISSING`` when a segment is absent or the current
    value is not a mapping.
    """
    current: Any = _as_mapping(context)
    for key in path.split("."):
        if not isinstance(current, Mapping) or key not in current:
            return _MISSING
        current = current[key]
    return current


def _as_mapping(context: Context) -> Any:
    if isinstance(context, BaseModel):
        return context.model_dump()
    return context


def render(template: str, context: Context) -> str:
    """
    Substitute every ``{{path}}`` token in ``template`` from ``context``.

    Missing paths and ``None`` values render as "". Never raises on content.
    """
    if not template:
        return ""
    data = _as_mapping(context)
    parts: List[str] = []
    for segment in _scan(template):
        if segment.path is None:
            parts.append(segment.text)
            continue
        value = resolve_path(data, segment.path)
        if value is _MISSING or value is None:
            continue
        parts.append(str(value))
    return "".join(parts)


def text_to_html(text: str) -> str:
    """
    Convert a plain-text body to HTML.

    ``&``, ``<`` and ``>`` are escaped first; lines are joined with
    ``<br />`` and an empty line becomes a ``<br />`` of its own.
    """
    escaped = html.escape(text, quote=False)
    lines = _LINE_SPLIT_RE.split(escaped)
    return "<br />".join(line if line else "<br />" for line in lines)


def render_email(config: DraftEmailConfig, context: Context) -> RenderedEmail:
    """Render the subject and the delivered HTML body of a draft-email action."""
    data = _as_mapping(context)
    subject = render(config.effective_subject_template, data)

    html_template = config.body_html_template
    if config.use_html and html_template and html_template.strip():
        body = render(html_template, data)
    else:
        body = text_to_html(render(config.effective_body_template, data))

    return RenderedEmail(subject=subject, html=body)


@lru_cache(maxsize=1)
def load_variable_catalog(catalog_path: str = CATALOG_PATH) -> List[Dict[str, str]]:
    """
    Load the documented template variables offered by authoring surfaces.

    Returns:
        List of ``{"category", "path", "label"}`` dicts, in catalog order.
    """
    with open(catalog_path, "r", encoding="utf-8") as f:
        catalog = yaml.safe_load(f) or {}

    variables = []
    for category in catalog.get("categories", []):
        for variable in category.get("variables", []):
            variables.append(
                {
                    "category": category["name"],
                    "path": variable["path"],
                    "label": variable.get("label", variable["path"]),
                }
            )
    return variables
