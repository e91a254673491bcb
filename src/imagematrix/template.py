"""Placeholder template engine.

Supports a small, strict subset of handlebars-style expressions::

    {{name}}                     scalar lookup
    {{name.0}} / {{name.field}}  positional or field access (nested, zero-based)
    {{#if cond}}..{{else}}..{{/if}}
    {{date}}                     resolution timestamp, unless the context overrides it

Templates are parsed into a node tree once and rendered in a single pass, so
substituted values are never re-expanded.
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import NoReturn, Union

from imagematrix.errors import TemplateError, TemplateErrorKind

ContextValue = Union[str, int, Sequence["ContextValue"], Mapping[str, "ContextValue"]]
Context = Mapping[str, ContextValue]

DATE_FORMAT = "%y-%m-%d"

_EXPRESSION = re.compile(r"\{\{(.*?)\}\}", re.DOTALL)
_PATH = re.compile(r"^[A-Za-z_][\w-]*(?:\.[\w-]+)*$")


@dataclass(frozen=True, slots=True)
class Text:
    value: str


@dataclass(frozen=True, slots=True)
class Lookup:
    path: str


@dataclass(frozen=True, slots=True)
class Conditional:
    path: str
    then: tuple[Node, ...]
    otherwise: tuple[Node, ...]


Node = Union[Text, Lookup, Conditional]


def render(template: str, context: Context, *, date: str | None = None) -> str:
    """Render *template* against *context*."""
    nodes = parse(template)
    return "".join(_render_nodes(nodes, context, date=date, template=template))


def render_all(templates: Sequence[str], context: Context, *, date: str | None = None) -> tuple[str, ...]:
    return tuple(render(template, context, date=date) for template in templates)


def resolution_date(now: datetime | None = None) -> str:
    """Format the timestamp bound to ``{{date}}`` for one resolution pass."""
    return (now or datetime.now(UTC)).strftime(DATE_FORMAT)


def parse(template: str) -> tuple[Node, ...]:
    # Each frame: (condition path, then-nodes, else-nodes or None while in the then-branch)
    root: list[Node] = []
    stack: list[tuple[str, list[Node], list[Node] | None]] = []

    def current() -> list[Node]:
        if not stack:
            return root
        _, then, otherwise = stack[-1]
        return then if otherwise is None else otherwise

    position = 0
    for match in _EXPRESSION.finditer(template):
        _append_text(current(), template[position : match.start()], template)
        position = match.end()
        expression = match.group(1).strip()

        if expression.startswith("#"):
            keyword, _, argument = expression[1:].partition(" ")
            if keyword != "if":
                _malformed(f"Unsupported block helper `#{keyword}`.", template, expression)
            argument = argument.strip()
            _check_path(argument, template, expression)
            stack.append((argument, [], None))
        elif expression == "else":
            if not stack or stack[-1][2] is not None:
                _malformed("`{{else}}` outside of an `{{#if}}` block.", template, expression)
            path, then, _ = stack.pop()
            stack.append((path, then, []))
        elif expression.startswith("/"):
            if expression[1:].strip() != "if" or not stack:
                _malformed("Unbalanced block close.", template, expression)
            path, then, otherwise = stack.pop()
            current().append(Conditional(path=path, then=tuple(then), otherwise=tuple(otherwise or ())))
        else:
            _check_path(expression, template, expression)
            current().append(Lookup(path=expression))

    _append_text(current(), template[position:], template)
    if stack:
        _malformed("Unclosed `{{#if}}` block.", template, stack[-1][0])
    return tuple(root)


def lookup(context: Context, path: str) -> ContextValue:
    """Resolve a dotted *path* in *context*, raising ``TemplateError`` on failure."""
    segments = path.split(".")
    value: ContextValue = context
    walked: list[str] = []
    for segment in segments:
        walked.append(segment)
        here = ".".join(walked)
        if isinstance(value, Mapping):
            if segment not in value:
                raise TemplateError(
                    f"Unknown field `{here}`.",
                    kind=TemplateErrorKind.UNKNOWN_FIELD,
                    path=here,
                )
            value = value[segment]
        elif isinstance(value, Sequence) and not isinstance(value, str):
            if not segment.isdigit():
                raise TemplateError(
                    f"List `{'.'.join(walked[:-1])}` cannot be accessed by field `{segment}`.",
                    kind=TemplateErrorKind.UNKNOWN_FIELD,
                    path=here,
                )
            index = int(segment)
            if index >= len(value):
                raise TemplateError(
                    f"Index `{here}` is out of range ({len(value)} items).",
                    kind=TemplateErrorKind.INDEX_OUT_OF_RANGE,
                    path=here,
                )
            value = value[index]
        else:
            raise TemplateError(
                f"Scalar `{'.'.join(walked[:-1])}` has no field `{segment}`.",
                kind=TemplateErrorKind.UNKNOWN_FIELD,
                path=here,
            )
    return value


def _render_nodes(
    nodes: Sequence[Node],
    context: Context,
    *,
    date: str | None,
    template: str,
) -> list[str]:
    out: list[str] = []
    for node in nodes:
        if isinstance(node, Text):
            out.append(node.value)
        elif isinstance(node, Lookup):
            out.append(_scalar(context, node.path, date=date, template=template))
        else:
            branch = node.then if _truthy(context, node.path) else node.otherwise
            out.extend(_render_nodes(branch, context, date=date, template=template))
    return out


def _scalar(context: Context, path: str, *, date: str | None, template: str) -> str:
    if path == "date" and "date" not in context:
        return date if date is not None else resolution_date()
    try:
        value = lookup(context, path)
    except TemplateError as exc:
        exc.with_context(template=template)
        raise
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        raise TemplateError(
            f"`{path}` is not a scalar value.",
            kind=TemplateErrorKind.UNKNOWN_FIELD,
            path=path,
            context={"template": template},
        )
    return str(value)


def _truthy(context: Context, path: str) -> bool:
    try:
        value = lookup(context, path)
    except TemplateError:
        return False
    if isinstance(value, (str, Sequence, Mapping)):
        return len(value) > 0
    return True


def _append_text(nodes: list[Node], text: str, template: str) -> None:
    if not text:
        return
    if "{{" in text or "}}" in text:
        _malformed("Unbalanced template braces.", template, text)
    nodes.append(Text(text))


def _check_path(path: str, template: str, expression: str) -> None:
    if not _PATH.fullmatch(path):
        _malformed(f"Invalid expression `{{{{{expression}}}}}`.", template, expression)


def _malformed(message: str, template: str, expression: str) -> NoReturn:
    raise TemplateError(
        message,
        kind=TemplateErrorKind.MALFORMED_EXPRESSION,
        path=expression,
        context={"template": template},
    )
