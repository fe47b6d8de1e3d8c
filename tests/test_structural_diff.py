from __future__ import annotations

import textwrap

import pytest

from tp.diff.structural import (
    JAVASCRIPT,
    MARKUP,
    PYTHON,
    TSX,
    TYPESCRIPT,
    PlainText,
    Structured,
    StructuralDiffEngine,
    resolve_file_kind,
)
from tp.errors import StructuralParseError
from tp.store import TextChange

ORIGINAL_PAGE = (
    "<div>\n"
    "  <h1>Welcome to our store</h1>\n"
    "  <script>var label = 'Buy now';</script>\n"
    "</div>\n"
)
MODIFIED_PAGE = (
    "<div>\n"
    "  <h1>Welcome to our store!</h1>\n"
    "  <script>var label = 'Buy now!';</script>\n"
    "</div>\n"
)


def test_resolve_file_kind_by_extension() -> None:
    markup = resolve_file_kind("views/Home.HTML")
    python = resolve_file_kind("plugins/banner.py")

    assert isinstance(markup, Structured) and markup.grammar is MARKUP
    assert isinstance(python, Structured) and python.grammar is PYTHON
    assert resolve_file_kind("assets/app.js") == Structured(JAVASCRIPT)
    assert resolve_file_kind("components/Banner.jsx") == Structured(JAVASCRIPT)
    assert resolve_file_kind("lib/cart.ts") == Structured(TYPESCRIPT)
    assert resolve_file_kind("components/Cart.TSX") == Structured(TSX)
    assert isinstance(resolve_file_kind("styles/site.css"), PlainText)
    assert isinstance(resolve_file_kind("README"), PlainText)


def test_markup_print_reproduces_source_exactly() -> None:
    source = "<!DOCTYPE html>\n<p class=\"x\">Fish &amp; chips<br>today</p><!-- note -->\n<img src='a.png'/>"

    assert MARKUP.print(MARKUP.parse(source)) == source


def test_markup_leaves_include_text_and_script_literals() -> None:
    leaves = MARKUP.leaves(MARKUP.parse(ORIGINAL_PAGE))

    assert leaves == ["Welcome to our store", "Buy now"]


def test_markup_rejects_unbalanced_tags() -> None:
    with pytest.raises(StructuralParseError):
        MARKUP.parse("<div><span></div>")
    with pytest.raises(StructuralParseError):
        MARKUP.parse("<section><p>open")


def test_markup_accepts_omitted_optional_end_tags() -> None:
    source = (
        "<ul>\n<li>Shoes\n<li>Hats\n</ul>\n"
        "<table><tr><td>One<td>Two<tr><td>Three</table>\n"
        "<select><option>S<option>M</select><p>First<p>Second\n"
    )

    document = MARKUP.parse(source)

    assert MARKUP.print(document) == source
    assert MARKUP.leaves(document) == ["Shoes", "Hats", "One", "Two", "Three", "S", "M", "First", "Second"]


def test_create_structural_diff_pairs_related_leaves() -> None:
    changes = StructuralDiffEngine().create_structural_diff(ORIGINAL_PAGE, MODIFIED_PAGE, MARKUP)

    assert changes == [
        TextChange(old="Welcome to our store", new="Welcome to our store!"),
        TextChange(old="Buy now", new="Buy now!"),
    ]


def test_structural_diff_survives_reformatted_target() -> None:
    engine = StructuralDiffEngine()
    changes = engine.create_structural_diff(ORIGINAL_PAGE, MODIFIED_PAGE, MARKUP)
    target = "<div><h1>Welcome to our store</h1><p>Other</p><script>var label = 'Buy now';</script></div>"

    patched = engine.apply_structural_diff(target, changes, MARKUP)

    assert patched == (
        "<div><h1>Welcome to our store!</h1><p>Other</p>"
        "<script>var label = 'Buy now!';</script></div>"
    )
    # The parsed tree of the input is not modified in place.
    assert MARKUP.print(MARKUP.parse(target)) == target


def test_structural_diff_returns_none_on_parse_failure_or_no_change() -> None:
    engine = StructuralDiffEngine()

    assert engine.create_structural_diff("<div>", MODIFIED_PAGE, MARKUP) is None
    assert engine.create_structural_diff(ORIGINAL_PAGE, ORIGINAL_PAGE, MARKUP) is None
    assert engine.apply_structural_diff("<div>", [TextChange(old="a", new="b")], MARKUP) == "<div>"


def test_python_grammar_replaces_string_literals() -> None:
    original = textwrap.dedent(
        """
        TITLE = "Hello"
        LABEL = 'Add to cart'
        DATA = b"raw"
        """
    ).lstrip()
    modified = original.replace('"Hello"', '"Hello there"')
    engine = StructuralDiffEngine()

    assert PYTHON.leaves(PYTHON.parse(original)) == ["Hello", "Add to cart"]

    changes = engine.create_structural_diff(original, modified, PYTHON)
    assert changes == [TextChange(old="Hello", new="Hello there")]
    assert engine.apply_structural_diff(original, changes, PYTHON) == modified

    escaped = engine.apply_structural_diff(original, [TextChange(old="Add to cart", new="Don't add")], PYTHON)
    assert "LABEL = 'Don\\'t add'" in escaped
    assert 'DATA = b"raw"' in escaped


def test_python_grammar_rejects_invalid_source() -> None:
    with pytest.raises(StructuralParseError):
        PYTHON.parse("def broken(:\n")


BANNER = (
    "export const Banner = () => (\n"
    '  <div className="banner">\n'
    "    <h2>Free shipping</h2>\n"
    "    <button title='Shop now'>Shop</button>\n"
    "  </div>\n"
    ");\n"
    "const label = 'Add to cart';\n"
    "const greeting = `Hi ${name}`;\n"
)


def test_script_leaves_cover_strings_and_jsx_text() -> None:
    leaves = JAVASCRIPT.leaves(JAVASCRIPT.parse(BANNER))

    assert {"banner", "Free shipping", "Shop now", "Shop", "Add to cart"} <= set(leaves)
    assert not any("Hi" in leaf for leaf in leaves)
    assert JAVASCRIPT.print(JAVASCRIPT.parse(BANNER)) == BANNER


def test_script_structural_diff_round_trips_jsx_text() -> None:
    engine = StructuralDiffEngine()
    modified = BANNER.replace("<h2>Free shipping</h2>", "<h2>Free shipping over $50</h2>")

    changes = engine.create_structural_diff(BANNER, modified, JAVASCRIPT)

    assert changes == [TextChange(old="Free shipping", new="Free shipping over $50")]
    assert engine.apply_structural_diff(BANNER, changes, JAVASCRIPT) == modified


def test_script_replacements_escape_the_delimiting_quote() -> None:
    patched = StructuralDiffEngine().apply_structural_diff(
        BANNER, [TextChange(old="Add to cart", new="Don't wait")], JAVASCRIPT
    )

    assert "const label = 'Don\\'t wait';" in patched
    assert JAVASCRIPT.parse(patched)

    titled = StructuralDiffEngine().apply_structural_diff(
        BANNER, [TextChange(old="Shop now", new="Don't wait")], JAVASCRIPT
    )
    assert "title='Don&apos;t wait'" in titled


def test_script_grammars_reject_invalid_source() -> None:
    with pytest.raises(StructuralParseError):
        JAVASCRIPT.parse("const = ;\n")
    with pytest.raises(StructuralParseError):
        TYPESCRIPT.parse("let total: = 1;\n")

    assert TYPESCRIPT.leaves(TYPESCRIPT.parse('let title: string = "Cart";\n')) == ["Cart"]
