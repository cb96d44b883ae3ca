"""Prompt template rendering.

Templates use {{key}} placeholders (inner whitespace allowed). Values are
stringified: None renders as an empty string, dicts and lists as indented
JSON, everything else via str(). Keys starting with "_" are private to the
engine and never substituted.

Rendering is permissive by default: placeholders with no matching key are
left verbatim. strict=True raises TemplateRenderError instead.
"""

import json
import re
from typing import Any

from .errors import TemplateRenderError

_PLACEHOLDER = re.compile(r"\{\{\s*([A-Za-z0-9_.\-]+)\s*\}\}")


def _stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return json.dumps(value, indent=2, ensure_ascii=False, default=str)
    return str(value)


def find_placeholders(template: str) -> list[str]:
    """Placeholder names in order of first appearance."""
    seen: list[str] = []
    for match in _PLACEHOLDER.finditer(template or ""):
        if match.group(1) not in seen:
            seen.append(match.group(1))
    return seen


def render_template(
    template: str,
    variables: dict[str, Any],
    strict: bool = False,
) -> str:
    """Substitute {{key}} placeholders from variables."""
    if not template:
        return ""

    unresolved: list[str] = []

    def _replace(match: re.Match) -> str:
        key = match.group(1)
        if key.startswith("_") or key not in variables:
            if key not in unresolved:
                unresolved.append(key)
            return match.group(0)
        return _stringify(variables[key])

    rendered = _PLACEHOLDER.sub(_replace, template)

    if strict and unresolved:
        raise TemplateRenderError(unresolved)
    return rendered
