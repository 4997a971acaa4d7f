"""
Minimal placeholder language for markup templates.

    {{ title }}                         substitution (markup-escaped)
    {{ title | truncate: 80 }}          filters: default, upper, lower, truncate
    {{ subtitle | default: "Hello" }}
    {% if logo_url %}...{% else %}...{% endif %}
    {% if not description %}...{% endif %}

Templates are compiled once into a small node list and bound many times.
"""
import re
from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional, Tuple, Union

from ..core.errors import BindingFailed, TemplateParseFailed

_TOKEN_RE = re.compile(r"(\{\{.*?\}\}|\{%.*?%\})", re.DOTALL)
_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_FILTERS = ("default", "upper", "lower", "truncate")

_MISSING = object()


def escape_markup(text: str) -> str:
    """Escape text so it can be placed in element content or attribute values."""
    return (
        text
        .replace('&', '&amp;')
        .replace('<', '&lt;')
        .replace('>', '&gt;')
        .replace('"', '&quot;')
        .replace("'", '&#39;')
    )


def format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (str, int, float)):
        return str(value)
    raise BindingFailed(f"Cannot substitute value of type {type(value).__name__}")


def is_truthy(value: Any) -> bool:
    if value is _MISSING or value is None:
        return False
    if isinstance(value, str):
        return value.strip() != ""
    return bool(value)


@dataclass
class Filter:
    name: str
    arg: Optional[Union[str, int, float]] = None


@dataclass
class TextNode:
    text: str


@dataclass
class VarNode:
    name: str
    filters: List[Filter] = field(default_factory=list)


@dataclass
class IfNode:
    name: str
    negate: bool
    body: list = field(default_factory=list)
    orelse: list = field(default_factory=list)


def _parse_filter_arg(raw: str, source: str):
    raw = raw.strip()
    if len(raw) >= 2 and raw[0] == raw[-1] and raw[0] in ('"', "'"):
        return raw[1:-1]
    try:
        return int(raw)
    except ValueError:
        pass
    try:
        return float(raw)
    except ValueError:
        raise TemplateParseFailed(f"Invalid filter argument '{raw}' in '{source}'")


def _parse_var(expr: str) -> VarNode:
    parts = [part.strip() for part in expr.split("|")]
    name = parts[0]
    if not _NAME_RE.match(name):
        raise TemplateParseFailed(f"Invalid placeholder name '{name}'")

    filters = []
    for part in parts[1:]:
        filter_name, _, raw_arg = part.partition(":")
        filter_name = filter_name.strip()
        if filter_name not in _FILTERS:
            raise TemplateParseFailed(f"Unknown filter '{filter_name}' in '{{{{ {expr} }}}}'")
        arg = _parse_filter_arg(raw_arg, expr) if raw_arg.strip() else None
        if filter_name in ("default", "truncate") and arg is None:
            raise TemplateParseFailed(f"Filter '{filter_name}' requires an argument")
        filters.append(Filter(filter_name, arg))
    return VarNode(name=name, filters=filters)


def _parse_if(expr: str) -> IfNode:
    words = expr.split()
    negate = len(words) == 3 and words[1] == "not"
    if len(words) not in (2, 3) or (len(words) == 3 and not negate):
        raise TemplateParseFailed(f"Malformed condition '{{% {expr} %}}'")
    name = words[-1]
    if not _NAME_RE.match(name):
        raise TemplateParseFailed(f"Invalid condition name '{name}'")
    return IfNode(name=name, negate=negate)


def compile_template(source: str) -> list:
    """Parse template text into nodes. Raises TemplateParseFailed."""
    root: list = []
    # (node, collecting_into) pairs for open {% if %} blocks
    stack: List[Tuple[IfNode, list]] = []
    current = root

    for token in _TOKEN_RE.split(source):
        if not token:
            continue
        if token.startswith("{{") and token.endswith("}}"):
            current.append(_parse_var(token[2:-2].strip()))
        elif token.startswith("{%") and token.endswith("%}"):
            expr = token[2:-2].strip()
            keyword = expr.split(" ", 1)[0] if expr else ""
            if keyword == "if":
                node = _parse_if(expr)
                current.append(node)
                stack.append((node, current))
                current = node.body
            elif keyword == "else":
                if not stack or current is not stack[-1][0].body:
                    raise TemplateParseFailed("{% else %} without matching {% if %}")
                current = stack[-1][0].orelse
            elif keyword == "endif":
                if not stack:
                    raise TemplateParseFailed("{% endif %} without matching {% if %}")
                _, current = stack.pop()
            else:
                raise TemplateParseFailed(f"Unknown directive '{{% {expr} %}}'")
        else:
            if "{{" in token or "{%" in token:
                raise TemplateParseFailed("Unterminated placeholder or directive")
            current.append(TextNode(token))

    if stack:
        raise TemplateParseFailed(f"Unclosed {{% if {stack[-1][0].name} %}} block")
    return root


def _apply_filters(node: VarNode, value: Any) -> str:
    for flt in node.filters:
        if flt.name == "default":
            if not is_truthy(value):
                value = flt.arg
            continue

        if value is _MISSING:
            break
        text = format_value(value)
        if flt.name == "upper":
            value = text.upper()
        elif flt.name == "lower":
            value = text.lower()
        elif flt.name == "truncate":
            limit = flt.arg
            if not isinstance(limit, int) or limit < 4:
                raise BindingFailed(f"truncate needs an integer of at least 4, got {limit!r}")
            value = text if len(text) <= limit else text[:limit - 3] + "..."

    if value is _MISSING or value is None:
        raise BindingFailed(f"Missing required parameter '{node.name}'")
    return format_value(value)


def bind(nodes: list, params: Mapping[str, Any]) -> str:
    """Bind params into compiled nodes. Raises BindingFailed."""
    out: List[str] = []
    for node in nodes:
        if isinstance(node, TextNode):
            out.append(node.text)
        elif isinstance(node, VarNode):
            out.append(escape_markup(_apply_filters(node, params.get(node.name, _MISSING))))
        else:
            truthy = is_truthy(params.get(node.name, _MISSING))
            branch = node.body if truthy != node.negate else node.orelse
            out.append(bind(branch, params))
    return "".join(out)
