"""Test markdown_tokenizer -- ArticleForge."""
from __future__ import annotations

from articleforge.markdown_tokenizer import split_front_matter, strip_inline, tokenize


class TestFrontMatter:

    def test_quoted_values_with_colons(self):
        fields, body = split_front_matter('---\ntitle: "A: B"\nslug: a-b\n---\nHello')
        assert fields == {"title": "A: B", "slug": "a-b"}
        assert body == "Hello"

    def test_escaped_quotes(self):
        fields, _ = split_front_matter('---\ntitle: "Say \\"hi\\""\n---\n')
        assert fields["title"] == 'Say "hi"'

    def test_no_front_matter(self):
        fields, body = split_front_matter("# Title\n\ntext")
        assert fields == {}
        assert body == "# Title\n\ntext"

    def test_unterminated_front_matter_is_body(self):
        fields, body = split_front_matter("---\ntitle: x\n")
        assert fields == {}
        assert body.startswith("---")


class TestInline:

    def test_collects_images_and_links(self):
        images, links = [], []
        text = strip_inline("See ![alt text](/a.png) and [docs](https://x.io \"t\").", images, links)
        assert text == "See and docs."
        assert images == [{"alt": "alt text", "url": "/a.png"}]
        assert links == [{"text": "docs", "url": "https://x.io"}]

    def test_unwraps_emphasis_code_and_html(self):
        text = strip_inline("**bold** and *em* and `code` and <b>tag</b> ~~gone~~", [], [])
        assert text == "bold and em and code and tag gone"

    def test_underscores_inside_words_kept(self):
        assert strip_inline("snake_case_name", [], []) == "snake_case_name"


class TestTokenize:

    def test_sample_document(self, sample_markdown):
        doc = tokenize(sample_markdown)
        assert doc.front_matter["title"] == "Antique Lamps: A Complete Guide for Collectors"
        assert doc.headings == [(2, "Caring for Antique Lamps"), (3, "Wiring"), (2, "Sources")]
        assert doc.images == [{"alt": "antique lamps", "url": "/images/antique-lamps.jpg"}]
        assert [l["url"] for l in doc.links] == ["https://example.com/guide", "https://example.com/museum"]

    def test_fenced_code_hash_is_not_heading(self, sample_markdown):
        doc = tokenize(sample_markdown)
        assert "not a heading" not in [text for _, text in doc.headings]
        assert "not a heading" not in doc.plain_text()

    def test_image_only_paragraph_dropped(self):
        doc = tokenize("![x](/x.png)\n\nText here.")
        assert [t.type for t in doc.tokens] == ["paragraph"]
        assert doc.plain_text() == "Text here."

    def test_plain_text_blocks_separated(self):
        doc = tokenize("# Title\n\nFirst line\nsecond line.\n\n- one\n- two")
        assert doc.plain_text() == "Title\n\nFirst line second line.\n\none\ntwo"

    def test_table_keeps_cell_text(self):
        doc = tokenize("| Name | Price |\n| --- | --- |\n| Lamp | $40 |\n")
        assert doc.tokens[0].type == "table"
        assert doc.tokens[0].text == "Name Price\nLamp $40"

    def test_blockquote_and_rule(self):
        doc = tokenize("> quoted *text*\n> more\n\n---\n\nAfter.")
        assert [t.type for t in doc.tokens] == ["blockquote", "paragraph"]
        assert doc.tokens[0].text == "quoted text more"

    def test_list_continuation_lines(self):
        doc = tokenize("1. first item\n   continues here\n2. second")
        assert doc.tokens[0].text == "first item continues here\nsecond"

    def test_heading_closing_hashes(self):
        assert tokenize("## Title ##").headings == [(2, "Title")]

    def test_empty(self):
        doc = tokenize("")
        assert doc.tokens == []
        assert doc.plain_text() == ""
