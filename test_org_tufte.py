# test_org_tufte.py
#
# Run:
#   python -m unittest -v
#
# Exporters are seeded so runs are reproducible; assertions still match ids
# structurally because the seed value itself is not part of the contract.

import contextlib
import io
import random
import re
import tempfile
import unittest
from pathlib import Path

import org_tufte as m
from config_loader import DEFAULT_CONFIG
from org_nodes import (
    Document,
    Figure,
    FootnoteDefinition,
    Link,
    MacroCall,
    Paragraph,
    QuoteBlock,
    Section,
    SpecialBlock,
    SrcBlock,
    VerseBlock,
)

MN_LABEL_RE = re.compile(r"<label for='mn-(?P<tag>[^.']+)\.\d+' class='margin-toggle'>&#8853;</label>")


def exporter(cfg=DEFAULT_CONFIG, footnotes=()):
    exp = m.TufteExporter(cfg, rng=random.Random(5))
    exp.begin(footnotes)
    return exp


class TestAdapters(unittest.TestCase):
    def render_inline(self, text):
        return f"<p>{text.upper()}</p>"

    # ---------- links ----------
    def test_link_adapter(self):
        req = m.link_to_request(Link("mn:side", "note"), self.render_inline)
        self.assertEqual(req.raw_text, "NOTE")
        self.assertEqual(req.placement_tag, "side")

    def test_link_adapter_auto_tag(self):
        req = m.link_to_request(Link("mn:", "note"), self.render_inline)
        self.assertIsNone(req.placement_tag)

    def test_link_adapter_ignores_other_links(self):
        self.assertIsNone(m.link_to_request(Link("https://x.org", "x"), self.render_inline))

    # ---------- special blocks ----------
    def test_special_block_single_figure_is_content(self):
        body = '<figure><img src="a.png" /></figure>\n'
        req = m.special_block_to_request(SpecialBlock("marginnote", name="fig1"), body)
        self.assertEqual(req.content, body.strip())
        self.assertEqual(req.placement_tag, "fig1")

    def test_special_block_text_becomes_raw_text(self):
        req = m.special_block_to_request(SpecialBlock("marginnote"), "<p>hello</p>\n")
        self.assertEqual(req.raw_text, "hello")
        self.assertIsNone(req.content)

    def test_special_block_with_block_body_is_wrapped_content(self):
        body = "<blockquote>\n<p>q</p>\n</blockquote>\n"
        req = m.special_block_to_request(SpecialBlock("marginnote", name="q1"), body)
        self.assertIsNone(req.raw_text)
        self.assertEqual(req.content, '<div class="marginnote">\n' + body.strip() + "\n</div>")
        self.assertEqual(req.placement_tag, "q1")

    def test_special_block_other_type(self):
        self.assertIsNone(m.special_block_to_request(SpecialBlock("epigraph"), "<p>x</p>"))

    # ---------- macros ----------
    def test_macro_adapter_joins_args_with_line_break(self):
        seen = []

        def render_inline(text):
            seen.append(text)
            return text

        m.macro_to_request(MacroCall("marginnote", ["a", "b"]), render_inline)
        self.assertEqual(seen, ["a\\\\\nb"])

    def test_macro_adapter_plain_when_not_expressive(self):
        cfg = DEFAULT_CONFIG.with_overrides(expressive_inline_marginnotes=False)
        req = m.macro_to_request(MacroCall("marginnote", ["*a*", "<b>"]), self.render_inline, cfg)
        self.assertEqual(req.raw_text, "*a*<br />&lt;b&gt;")

    def test_macro_adapter_other_macro(self):
        self.assertIsNone(m.macro_to_request(MacroCall("date", []), self.render_inline))


class TestInlineExport(unittest.TestCase):
    # ---------- margin notes ----------
    def test_margin_note_link(self):
        out = exporter().render_inline("See [[mn:foo][a *bold* note]].")
        self.assertTrue(out.startswith("See <label for='mn-foo."))
        self.assertIn("<span class='marginnote'>a <strong>bold</strong> note</span>.", out)

    def test_margin_note_link_auto_tag(self):
        out = exporter().render_inline("[[mn:][x]]")
        self.assertEqual(MN_LABEL_RE.match(out).group("tag"), "auto")

    def test_margin_note_text_may_hold_a_sidenote(self):
        exp = exporter(footnotes=[FootnoteDefinition("1", [Paragraph("deep")])])
        out = exp.render_inline("[[mn:][see[fn:1]]] end")
        self.assertIsNotNone(MN_LABEL_RE.match(out))
        self.assertIn("<span class='marginnote'>see<label id='fnr.1'", out)
        self.assertTrue(out.endswith("<sup class='numeral'>1</sup>deep</span></span> end"))

    def test_margin_note_tag_with_space_gives_valid_id(self):
        out = exporter().render_inline("[[mn:my note][x]]")
        self.assertEqual(MN_LABEL_RE.match(out).group("tag"), "my-note")

    def test_normal_link_untouched(self):
        out = exporter().render_inline("[[https://example.org][site]]")
        self.assertEqual(out, '<a href="https://example.org">site</a>')

    def test_marginnote_macro(self):
        out = exporter().render_inline("{{{marginnote(first, /second/)}}}")
        self.assertIsNotNone(MN_LABEL_RE.match(out))
        self.assertIn("<span class='marginnote'>first<br />\n<em>second</em></span>", out)

    def test_marginnote_macro_not_expressive(self):
        cfg = DEFAULT_CONFIG.with_overrides(expressive_inline_marginnotes=False)
        out = exporter(cfg).render_inline("{{{marginnote(first, /second/)}}}")
        self.assertIn("<span class='marginnote'>first<br />/second/</span>", out)

    def test_undefined_macro_raises(self):
        with self.assertRaisesRegex(ValueError, "Undefined Org macro: nope"):
            exporter().render_inline("{{{nope}}}")

    def test_custom_symbol(self):
        cfg = DEFAULT_CONFIG.with_overrides(margin_note_symbol="&#9432;")
        out = exporter(cfg).render_inline("[[mn:][x]]")
        self.assertIn("class='margin-toggle'>&#9432;</label>", out)

    # ---------- sidenotes ----------
    def test_footnote_becomes_sidenote(self):
        exp = exporter(footnotes=[FootnoteDefinition("1", [Paragraph("note")])])
        out = exp.render_inline("Text[fn:1] more")
        self.assertRegex(
            out,
            r"^Text<label id='fnr\.1' for='fnr-in\.1\.(\d+)' class='margin-toggle sidenote-number'>"
            r"<sup class='numeral'>1</sup></label>"
            r"<input type='checkbox' id='fnr-in\.1\.\1' class='margin-toggle'>"
            r"<span class='sidenote'><sup class='numeral'>1</sup>note</span> more$",
        )

    def test_repeated_footnote_keeps_number_but_not_id(self):
        exp = exporter(footnotes=[FootnoteDefinition("a", [Paragraph("note")])])
        out = exp.render_inline("x[fn:a] y[fn:a]")
        ids = re.findall(r"<label id='([^']+)'", out)
        self.assertEqual(ids[0], "fnr.1")
        self.assertRegex(ids[1], r"^fnr\.1\.\d+$")
        self.assertEqual(out.count("<sup class='numeral'>1</sup>"), 4)

    def test_numbers_follow_first_reference_order(self):
        exp = exporter(footnotes=[
            FootnoteDefinition("a", [Paragraph("A")]),
            FootnoteDefinition("b", [Paragraph("B")]),
        ])
        out = exp.render_inline("[fn:b] then [fn:a]")
        self.assertEqual(re.findall(r"<label id='fnr\.(\d+)'", out), ["1", "2"])
        self.assertIn("<sup class='numeral'>1</sup>B", out)

    def test_adjacent_footnotes_get_separator(self):
        exp = exporter(footnotes=[
            FootnoteDefinition("a", [Paragraph("A")]),
            FootnoteDefinition("b", [Paragraph("B")]),
        ])
        self.assertEqual(exp.render_inline("x[fn:a][fn:b]").count("<sup>, </sup>"), 1)
        exp.begin([FootnoteDefinition("a", [Paragraph("A")]), FootnoteDefinition("b", [Paragraph("B")])])
        self.assertNotIn("<sup>, </sup>", exp.render_inline("x[fn:a] [fn:b]"))

    def test_inline_and_anonymous_footnotes(self):
        out = exporter().render_inline("a[fn:n:named *def*] b[fn::anon]")
        self.assertIn("<sup class='numeral'>1</sup>named <strong>def</strong>", out)
        self.assertIn("<sup class='numeral'>2</sup>anon", out)

    def test_nested_footnote(self):
        exp = exporter(footnotes=[
            FootnoteDefinition("1", [Paragraph("outer[fn:2]")]),
            FootnoteDefinition("2", [Paragraph("inner")]),
        ])
        out = exp.render_inline("x[fn:1]")
        self.assertIn("<label id='fnr.2'", out)
        self.assertIn("<sup class='numeral'>2</sup>inner", out)

    def test_missing_definition_raises(self):
        with self.assertRaisesRegex(ValueError, "Definition not found"):
            exporter().render_inline("x[fn:ghost]")

    def test_self_referencing_footnote_raises(self):
        exp = exporter(footnotes=[FootnoteDefinition("1", [Paragraph("see[fn:1]")])])
        with self.assertRaisesRegex(ValueError, "references itself"):
            exp.render_inline("x[fn:1]")


class TestBlockExport(unittest.TestCase):
    def test_quote_caption_becomes_footer(self):
        out = exporter().render(QuoteBlock([Paragraph("x")], caption="Cite"))
        self.assertEqual(out, "<blockquote>\n<p>x</p>\n<footer>Cite</footer></blockquote>\n")

    def test_quote_without_caption(self):
        out = exporter().render(QuoteBlock([Paragraph("x")]))
        self.assertEqual(out, "<blockquote>\n<p>x</p>\n</blockquote>\n")

    def test_nested_quote_footer_goes_on_outer_block(self):
        out = exporter().render(QuoteBlock([QuoteBlock([Paragraph("in")])], caption="Out"))
        self.assertTrue(out.endswith("</blockquote>\n<footer>Out</footer></blockquote>\n"))

    def test_verse_caption(self):
        out = exporter().render(VerseBlock(["a", "b"], caption="Poet"))
        self.assertEqual(out, '<div class="verse">\na<br />\nb\n<footer>Poet</footer></div>\n')

    def test_epigraph(self):
        out = exporter().render(SpecialBlock("epigraph", [QuoteBlock([Paragraph("q")], caption="A")]))
        self.assertEqual(
            out,
            '<div class="epigraph">\n<blockquote>\n<p>q</p>\n<footer>A</footer></blockquote>\n</div>\n',
        )

    def test_marginnote_block_with_figure(self):
        out = exporter().render(SpecialBlock("marginnote", [Figure("a.png")]))
        self.assertIsNotNone(MN_LABEL_RE.match(out))
        self.assertTrue(out.endswith('<figure><img src="a.png" alt="a.png" /></figure>\n'))

    def test_marginnote_block_with_text(self):
        out = exporter().render(SpecialBlock("marginnote", [Paragraph("hello")], name="n1"))
        self.assertEqual(MN_LABEL_RE.match(out).group("tag"), "n1")
        self.assertTrue(out.endswith("<span class='marginnote'>hello</span>\n"))

    def test_marginnote_block_with_quote_keeps_block_markup_out_of_span(self):
        out = exporter().render(SpecialBlock("marginnote", [QuoteBlock([Paragraph("q")], caption="A")]))
        self.assertIsNotNone(MN_LABEL_RE.match(out))
        self.assertNotIn("<span class='marginnote'>", out)
        self.assertTrue(out.endswith(
            '<div class="marginnote">\n<blockquote>\n<p>q</p>\n<footer>A</footer></blockquote>\n</div>\n'
        ))

    def test_figure_caption_is_margin_note(self):
        out = exporter().render(Figure("img.png", caption="Cap"))
        self.assertRegex(
            out,
            r"^<figure><label for='mn-auto\.\d+' class='margin-toggle'>&#8853;</label>"
            r"<input type='checkbox' id='mn-auto\.\d+' class='margin-toggle'>"
            r"<span class='marginnote'>Cap</span><img src=\"img.png\" alt=\"Cap\" /></figure>\n$",
        )

    def test_fullwidth_figure_keeps_figcaption(self):
        out = exporter().render(Figure("img.png", caption="Cap", html_class="fullwidth"))
        self.assertEqual(
            out,
            '<figure class="fullwidth"><img src="img.png" alt="Cap" /><figcaption>Cap</figcaption></figure>\n',
        )

    def test_asset_prefix_applies_to_relative_images(self):
        exp = m.make_exporter(seed=1, asset_prefix="/assets/")
        exp.begin()
        self.assertIn('<img src="/assets/img.png"', exp.render(Figure("img.png")))
        self.assertIn('<img src="https://x.org/a.png"', exp.render(Figure("https://x.org/a.png")))

    def test_src_block(self):
        out = exporter().render(SrcBlock("a < b", language="python"))
        self.assertEqual(out, '<pre class="code"><code>a &lt; b</code></pre>\n')

    def test_src_block_caption_is_margin_note(self):
        out = exporter().render(SrcBlock("x", caption="Listing"))
        self.assertIn("<span class='marginnote'>Listing</span><pre class=\"code\">", out)

    def test_section(self):
        out = exporter().render(Section("Intro", 1, [Paragraph("x")]))
        self.assertEqual(out, "<section>\n<h2>Intro</h2>\n<p>x</p>\n</section>\n")


class TestDocumentExport(unittest.TestCase):
    def doc(self):
        return Document(
            title="T",
            subtitle="S",
            author="Me",
            headers={"title": "T", "subtitle": "S", "author": "Me", "language": "en"},
            children=[Paragraph("Body[fn:1].")],
            footnotes=[FootnoteDefinition("1", [Paragraph("note")])],
        )

    def test_document_shell(self):
        out = m.export_document(self.doc(), seed=1)
        self.assertTrue(out.startswith("<!doctype html>"))
        self.assertIn('<link rel="stylesheet" href="tufte.css" />', out)
        self.assertIn('<meta name="author" content="Me" />', out)
        self.assertIn('<meta name="x-org-language" content="en" />', out)
        self.assertIn('<article>\n<h1 class="title">T</h1>\n<p class="subtitle">S</p>\n<p>Body', out)
        self.assertTrue(out.endswith("</article>\n</body>\n</html>\n"))

    def test_no_footnote_section_by_default(self):
        self.assertNotIn('id="footnotes"', m.export_document(self.doc(), seed=1))

    def test_footnote_section_links_back_to_sidenote(self):
        cfg = DEFAULT_CONFIG.with_overrides(include_footnotes_at_bottom=True)
        out = m.export_document(self.doc(), cfg, seed=1)
        self.assertIn('<div id="footnotes">', out)
        back_link = re.search(r'<a id="fn\.1" class="footnum" href="#([^"]+)"', out).group(1)
        self.assertIn(f"<label id='{back_link}'", out)

    def test_seed_makes_output_reproducible(self):
        self.assertEqual(m.export_document(self.doc(), seed=3), m.export_document(self.doc(), seed=3))

    def test_export_fragment(self):
        out = m.export_fragment("Hi {{{marginnote(there)}}}", seed=1)
        self.assertTrue(out.startswith("Hi <label for='mn-auto."))
        self.assertTrue(out.endswith("<span class='marginnote'>there</span>"))


class TestCommandLine(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.root = Path(self.tmp.name)

    def tearDown(self) -> None:
        self.tmp.cleanup()

    def write(self, rel: str, content: str) -> Path:
        p = self.root / rel
        p.write_text(content, encoding="utf-8")
        return p

    def test_writes_output_file(self):
        src = self.write("doc.yml", "title: T\nbody:\n  - Hello[fn:1].\nfootnotes:\n  1: A note.\n")
        out = self.root / "out.html"
        self.assertEqual(m.main([str(src), "-o", str(out), "--seed", "1"]), 0)
        html = out.read_text(encoding="utf-8")
        self.assertIn("<article>", html)
        self.assertIn("A note.", html)

    def test_footnotes_at_bottom_flag(self):
        src = self.write("doc.yml", "body:\n  - Hello[fn:1].\nfootnotes:\n  1: A note.\n")
        out = self.root / "out.html"
        self.assertEqual(m.main([str(src), "-o", str(out), "--footnotes-at-bottom"]), 0)
        self.assertIn('<div id="footnotes">', out.read_text(encoding="utf-8"))

    def test_invalid_document_returns_2(self):
        src = self.write("bad.yml", "body: 42\n")
        stderr = io.StringIO()
        with contextlib.redirect_stderr(stderr):
            self.assertEqual(m.main([str(src)]), 2)
        self.assertIn("[org_tufte] Invalid input document", stderr.getvalue())

    def test_bad_config_returns_2(self):
        src = self.write("doc.yml", "body: []\n")
        cfg = self.write("config.yml", "randid_limit: -1\n")
        with contextlib.redirect_stderr(io.StringIO()):
            self.assertEqual(m.main([str(src), "-c", str(cfg)]), 2)

    def test_export_error_returns_1(self):
        src = self.write("doc.yml", "body:\n  - '{{{undefined}}}'\n")
        with contextlib.redirect_stderr(io.StringIO()):
            self.assertEqual(m.main([str(src)]), 1)


if __name__ == "__main__":
    unittest.main()
