"""
Unit tests for the template placeholder language.
"""
import pytest

from ogforge.core.errors import BindingFailed, TemplateParseFailed
from ogforge.services.template_language import bind, compile_template, escape_markup


def render(source, **params):
    return bind(compile_template(source), params)


class TestSubstitution:
    """Test placeholder substitution and filters."""

    def test_plain_substitution(self):
        assert render("<t>{{ title }}</t>", title="Hello") == "<t>Hello</t>"

    def test_values_are_markup_escaped(self):
        assert render("{{ title }}", title='<b>"Tom" & Jerry</b>') == \
            "&lt;b&gt;&quot;Tom&quot; &amp; Jerry&lt;/b&gt;"

    def test_missing_parameter_fails_binding(self):
        with pytest.raises(BindingFailed, match="title"):
            render("{{ title }}")

    def test_none_counts_as_missing(self):
        with pytest.raises(BindingFailed):
            render("{{ title }}", title=None)

    def test_default_filter(self):
        assert render("{{ color | default: '#fff' }}") == "#fff"
        assert render("{{ color | default: '#fff' }}", color="#000") == "#000"

    def test_default_filter_with_integer(self):
        assert render("{{ width | default: 1200 }}") == "1200"

    def test_default_filter_with_float(self):
        assert render("{{ opacity | default: 0.35 }}") == "0.35"
        assert render("{{ opacity | default: 0.35 }}", opacity=0.8) == "0.8"

    def test_whole_floats_render_as_integers(self):
        assert render("{{ width }}", width=800.0) == "800"

    def test_upper_and_lower(self):
        assert render("{{ name | upper }}", name="acme") == "ACME"
        assert render("{{ name | lower }}", name="ACME") == "acme"

    def test_truncate(self):
        assert render("{{ title | truncate: 8 }}", title="a" * 10) == "aaaaa..."
        assert render("{{ title | truncate: 8 }}", title="short") == "short"

    def test_filters_chain_left_to_right(self):
        assert render("{{ name | default: 'anon' | upper }}") == "ANON"

    def test_truncate_limit_too_small(self):
        with pytest.raises(BindingFailed):
            render("{{ title | truncate: 2 }}", title="abcdef")

    def test_non_scalar_values_fail_binding(self):
        with pytest.raises(BindingFailed):
            render("{{ title }}", title=["a", "b"])


class TestConditionals:
    """Test {% if %} blocks."""

    def test_if_else(self):
        source = "{% if logo %}L{% else %}N{% endif %}"
        assert render(source, logo="x.png") == "L"
        assert render(source) == "N"

    def test_blank_string_is_falsy(self):
        assert render("{% if d %}yes{% endif %}", d="   ") == ""

    def test_if_not(self):
        assert render("{% if not d %}none{% endif %}") == "none"
        assert render("{% if not d %}none{% endif %}", d="x") == ""

    def test_nested_blocks(self):
        source = "{% if a %}A{% if b %}B{% endif %}{% endif %}"
        assert render(source, a=1, b=1) == "AB"
        assert render(source, a=1) == "A"
        assert render(source, b=1) == ""

    def test_missing_params_in_untaken_branch_are_fine(self):
        assert render("{% if d %}{{ d_extra }}{% endif %}ok") == "ok"


class TestParseErrors:
    """Test malformed template detection."""

    @pytest.mark.parametrize("source", [
        "{% if a %}unclosed",
        "stray {% endif %}",
        "{% else %}",
        "{% if a %}{% else %}{% else %}{% endif %}",
        "{% for x in y %}{% endfor %}",
        "{% if a b c %}{% endif %}",
        "{{ title | shout }}",
        "{{ title | truncate }}",
        "{{ title | truncate: many }}",
        "{{ 1title }}",
        "{{ title",
        "{{ title }",
        "{% if a",
        "{% if a %}{{ title %}{% endif %}",
    ])
    def test_malformed_templates(self, source):
        with pytest.raises(TemplateParseFailed):
            compile_template(source)


class TestEscapeMarkup:
    """Test escaping helper."""

    def test_escapes_all_special_characters(self):
        assert escape_markup("&<>\"'") == "&amp;&lt;&gt;&quot;&#39;"
