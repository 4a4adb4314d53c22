from web_cloner.parser import (
    extract_assets,
    extract_css_urls,
    inline_svg_sprites,
    parse_srcset,
    relink_anchors,
    rewrite_css,
    rewrite_html,
)

BASE = "https://example.com/"


# ====================================================================
# Extraction
# ====================================================================


class TestExtract:
    def test_buckets(self):
        html = """<html><head>
        <link rel="stylesheet" href="/css/site.css">
        <link rel="preload" as="font" href="/f/a.woff2">
        <link rel="icon" href="/favicon.ico">
        <script src="app.js"></script>
        </head><body>
        <img src="a.png">
        <a href="/about">About</a>
        <video src="clip.mp4" poster="poster.jpg"></video>
        <iframe src="/embed/frame.html"></iframe>
        </body></html>"""
        a = extract_assets(html, BASE)
        assert a.stylesheets == ["https://example.com/css/site.css"]
        assert a.fonts == ["https://example.com/f/a.woff2"]
        assert "https://example.com/favicon.ico" in a.images
        assert a.scripts == ["https://example.com/app.js"]
        assert "https://example.com/a.png" in a.images
        assert "https://example.com/poster.jpg" in a.images
        assert a.links == ["https://example.com/about"]
        assert "https://example.com/clip.mp4" in a.other
        assert "https://example.com/embed/frame.html" in a.other

    def test_base_tag_wins(self):
        html = '<html><head><base href="https://cdn.example.com/static/"></head>' \
            '<body><img src="a.png"></body></html>'
        a = extract_assets(html, BASE)
        assert a.images == ["https://cdn.example.com/static/a.png"]

    def test_srcset_and_lazy_load(self):
        html = """<body>
        <img src="s.png" srcset="m.png 2x, l.png 3x">
        <img data-src="lazy.png" data-srcset="lazy-1.png 100w, lazy-2.png 200w">
        <img data-lazy-src="other.png">
        <picture><source srcset="p.webp"></picture>
        </body>"""
        a = extract_assets(html, BASE)
        for name in ("s", "m", "l", "lazy", "lazy-1", "lazy-2", "other"):
            assert f"https://example.com/{name}.png" in a.images
        assert "https://example.com/p.webp" in a.images

    def test_inline_style_and_style_block(self):
        html = """<html><head><style>
        @import "theme.css";
        @font-face { src: url(/f/x.woff); }
        </style></head>
        <body><div style="background: url('bg.jpg')"></div></body></html>"""
        a = extract_assets(html, BASE)
        assert "https://example.com/bg.jpg" in a.images
        assert a.stylesheets == ["https://example.com/theme.css"]
        assert a.fonts == ["https://example.com/f/x.woff"]

    def test_svg_sprite_reference(self):
        html = '<body><svg><use href="/icons.svg#home"></use></svg>' \
            '<svg><use href="#local"></use></svg></body>'
        a = extract_assets(html, BASE)
        assert a.svg_sprites == ["https://example.com/icons.svg"]

    def test_non_fetchable_skipped(self):
        html = """<body>
        <a href="mailto:a@example.com">m</a>
        <a href="javascript:void(0)">j</a>
        <a href="#section">s</a>
        <img src="data:image/png;base64,AAAA">
        </body>"""
        a = extract_assets(html, BASE)
        assert a.links == [] and a.images == []

    def test_duplicates_collapsed(self):
        a = extract_assets('<body><img src="a.png"><img src="a.png"></body>', BASE)
        assert a.images == ["https://example.com/a.png"]

    def test_parse_srcset(self):
        assert parse_srcset("a.png 1x, b.png 2x") == ["a.png", "b.png"]
        assert parse_srcset("") == []


# ====================================================================
# Rewriting
# ====================================================================


class TestRewriteHtml:
    def test_no_substitutions_is_byte_identical(self):
        html = "<!DOCTYPE html>\n<html><head>  <title>T</title></head>\n" \
            "<body><img src='x.png'  alt=x></body></html>\n"
        assert rewrite_html(html, {}, BASE) == html

    def test_rewrites_known_refs_only(self):
        html = '<html><body><img src="a.png"><img src="b.png"></body></html>'
        out = rewrite_html(html, {"https://example.com/a.png": "img/a.png"}, BASE)
        assert 'src="img/a.png"' in out
        assert 'src="b.png"' in out

    def test_fragment_preserved(self):
        html = '<html><body><a href="/about#team">t</a></body></html>'
        out = rewrite_html(html, {"https://example.com/about": "about.html"}, BASE)
        assert 'href="about.html#team"' in out

    def test_integrity_removed(self):
        html = '<html><head><link rel="stylesheet" href="/s.css" ' \
            'integrity="sha384-abc" crossorigin="anonymous"></head></html>'
        out = rewrite_html(html, {"https://example.com/s.css": "s.css"}, BASE)
        assert "integrity" not in out
        assert "crossorigin" not in out

    def test_base_tag_removed(self):
        html = '<html><head><base href="https://cdn.example.com/"></head>' \
            '<body><img src="a.png"></body></html>'
        out = rewrite_html(html, {"https://cdn.example.com/a.png": "external/a.png"}, BASE)
        assert "<base" not in out
        assert 'src="external/a.png"' in out
        assert "<base" not in rewrite_html(html, {}, BASE)

    def test_srcset_rewritten(self):
        html = '<html><body><img srcset="a.png 1x, b.png 2x"></body></html>'
        out = rewrite_html(html, {"https://example.com/a.png": "l/a.png"}, BASE)
        assert 'srcset="l/a.png 1x, b.png 2x"' in out

    def test_style_block_rewritten(self):
        html = "<html><head><style>body { background: url(bg.png); }</style></head></html>"
        out = rewrite_html(html, {"https://example.com/bg.png": "img/bg.png"}, BASE)
        assert "url(img/bg.png)" in out

    def test_sprite_reference_keeps_fragment(self):
        html = '<html><body><svg><use href="/icons.svg#home"></use></svg></body></html>'
        out = rewrite_html(html, {"https://example.com/icons.svg": "icons.svg"}, BASE)
        assert 'href="icons.svg#home"' in out


class TestCss:
    def test_extract(self):
        css = "@import 'reset.css'; a { background: url(\"../img/a.png\") } b { src: url(data:x) }"
        assert extract_css_urls(css, "https://example.com/css/site.css") == [
            "https://example.com/img/a.png",
            "https://example.com/css/reset.css",
        ]

    def test_rewrite_keeps_quote_style(self):
        css = "a { background: url('a.png') } b { background: url(b.png) }"
        out = rewrite_css(
            css,
            {"https://example.com/a.png": "img/a.png", "https://example.com/b.png": "img/b.png"},
            BASE,
        )
        assert "url('img/a.png')" in out
        assert "url(img/b.png)" in out

    def test_rewrite_quotes_when_needed(self):
        out = rewrite_css("a { background: url(a.png) }", {"https://example.com/a.png": "my img.png"}, BASE)
        assert 'url("my img.png")' in out

    def test_unmapped_left_alone(self):
        css = "a { background: url(https://other.com/x.png) }"
        assert rewrite_css(css, {}, BASE) == css

    def test_import_rewritten(self):
        out = rewrite_css('@import "theme.css";', {"https://example.com/theme.css": "t.css"}, BASE)
        assert out == '@import "t.css";'


# ====================================================================
# Sprite inlining
# ====================================================================


SPRITE = (
    '<svg xmlns="http://www.w3.org/2000/svg">'
    '<symbol id="home" viewBox="0 0 10 10"><path d="M0 0h10v10z"/></symbol>'
    "</svg>"
)


class TestInlineSprites:
    def test_embeds_and_repoints(self):
        html = '<html><body><svg><use href="icons.svg#home"></use></svg></body></html>'
        out = inline_svg_sprites(html, {"icons.svg": SPRITE})
        assert 'id="home"' in out
        assert 'href="#home"' in out
        assert "icons.svg" not in out
        assert "display: none;" in out

    def test_no_contents_unchanged(self):
        html = '<html><body><svg><use href="icons.svg#home"></use></svg></body></html>'
        assert inline_svg_sprites(html, {}) == html

    def test_unknown_sprite_left_alone(self):
        html = '<html><body><svg><use href="other.svg#x"></use></svg></body></html>'
        assert inline_svg_sprites(html, {"icons.svg": SPRITE}) == html


# ====================================================================
# Post-crawl relinking
# ====================================================================


class TestRelinkAnchors:
    def test_saved_pages_linked_locally(self):
        html = (
            '<html><body><a href="https://example.com/a#top">A</a>'
            '<a href="https://example.com/gone">G</a><a href="/rel">R</a></body></html>'
        )
        out = relink_anchors(html, {"https://example.com/a": "a.html"})
        assert 'href="a.html#top"' in out
        assert 'href="https://example.com/gone"' in out
        assert 'href="/rel"' in out

    def test_nothing_saved_unchanged(self):
        html = '<html><body><a href="https://example.com/a">A</a></body></html>'
        assert relink_anchors(html, {}) == html
