from datetime import UTC, datetime

import pytest

from imagematrix.errors import TemplateError, TemplateErrorKind
from imagematrix.template import parse, render, resolution_date

CONTEXT = {
    "base": {"name": "al", "version": "2023", "versions": ["2023"], "v": {"version": "2023", "versions": ["2023"]}},
    "corretto": {"name": "corretto", "version": "21.0.3", "versions": ["21", "0", "3"]},
    "empty": "",
}


def test_render_scalars_indices_and_nested_fields() -> None:
    rendered = render("{{base.name}}:{{corretto.versions.0}}/{{base.v.versions.0}}", CONTEXT)

    assert rendered == "al:21/2023"


def test_render_is_pure_for_identical_inputs() -> None:
    template = "{{corretto.version}}-{{#if empty}}x{{else}}y{{/if}}"

    assert render(template, CONTEXT) == render(template, CONTEXT) == "21.0.3-y"


def test_substituted_values_are_not_expanded_again() -> None:
    assert render("{{a}}", {"a": "{{b}}", "b": "boom"}) == "{{b}}"


def test_conditionals_nest_and_treat_missing_values_as_false() -> None:
    template = "{{#if corretto}}j{{#if missing}}m{{else}}{{corretto.versions.0}}{{/if}}{{else}}none{{/if}}"

    assert render(template, CONTEXT) == "j21"
    assert render(template, {}) == "none"
    assert render("{{#if empty}}set{{/if}}", CONTEXT) == ""


def test_date_uses_resolution_timestamp_unless_overridden() -> None:
    assert render("build-{{date}}", {}, date="24-05-06") == "build-24-05-06"
    assert render("{{date}}", {"date": "pinned"}, date="24-05-06") == "pinned"
    assert resolution_date(datetime(2024, 1, 2, 23, 59, tzinfo=UTC)) == "24-01-02"


@pytest.mark.parametrize(
    ("template", "kind", "path"),
    [
        ("{{nope}}", TemplateErrorKind.UNKNOWN_FIELD, "nope"),
        ("{{Base.name}}", TemplateErrorKind.UNKNOWN_FIELD, "Base"),
        ("{{corretto.versions.3}}", TemplateErrorKind.INDEX_OUT_OF_RANGE, "corretto.versions.3"),
        ("{{corretto.version.major}}", TemplateErrorKind.UNKNOWN_FIELD, "corretto.version.major"),
        ("{{corretto.versions}}", TemplateErrorKind.UNKNOWN_FIELD, "corretto.versions"),
    ],
)
def test_lookup_errors_carry_kind_and_path(template: str, kind: TemplateErrorKind, path: str) -> None:
    with pytest.raises(TemplateError) as excinfo:
        render(template, CONTEXT)

    assert excinfo.value.kind == kind
    assert excinfo.value.path == path
    assert excinfo.value.context["template"] == template


@pytest.mark.parametrize(
    "template",
    ["{{#if}}x{{/if}}", "{{a b}}", "{{#if a}}open", "{{/if}}", "{{else}}", "stray }} brace", "{{#each a}}{{/each}}"],
)
def test_malformed_expressions_are_rejected(template: str) -> None:
    with pytest.raises(TemplateError) as excinfo:
        parse(template)

    assert excinfo.value.kind == TemplateErrorKind.MALFORMED_EXPRESSION
