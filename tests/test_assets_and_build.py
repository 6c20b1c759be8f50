import os
from pathlib import Path

import pytest
from PIL import Image

from inkpress.assets import AssetPipeline
from inkpress.build import build_site, check_site, load_build_config
from inkpress.config import load_config, load_data, normalize_baseurl
from inkpress.content import StaticFile
from inkpress.errors import (
    BrokenReferenceError,
    ConfigError,
    DuplicatePermalinkError,
    LayoutNotFoundError,
    MetadataError,
)


def _write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


DEFAULT_CONFIG = "title: Test\nurl: https://example.com\n"


def create_project(tmp_path: Path, config: str = DEFAULT_CONFIG) -> Path:
    project = tmp_path
    site = project / "site"
    _write(project / "inkpress.yaml", config)
    _write(project / "data" / "site.yaml", "author: Ana\n")
    _write(project / "data" / "nav.yaml", "- label: Home\n  url: /\n")
    _write(
        site / "_layouts" / "default.html",
        "<link href=\"{{ '/assets/css/main.css' | relative_url }}\">{{ content }}",
    )
    _write(
        site / "_layouts" / "post.html",
        "---\nlayout: default\n---\n<article>{{ content }}</article>",
    )
    _write(
        site / "index.html",
        "---\nlayout: default\n---\n"
        '{% for p in site.posts %}<a href="{{ p.url | relative_url }}">{{ p.title }}</a>'
        "{% endfor %}",
    )
    _write(site / "about.md", "---\nlayout: default\ntitle: About\n---\n# About\n")
    _write(
        site / "_posts" / "2024-01-02-hello.md",
        "---\nlayout: post\ntitle: \"X\"\n---\n"
        "Base: {{ site.baseurl }}\n\n"
        "```\n{{ site.baseurl }}\n```\n\n"
        "[About]({{ link('about.md') }})\n",
    )
    _write(site / "robots.txt", "User-agent: *\n")
    _write(project / "assets" / "css" / "main.css", "body{}")
    _write(project / "assets" / "js" / "main.js", "function test(){ return 1 + 1; }")
    (project / "assets" / "images").mkdir(parents=True)
    Image.new("RGB", (2, 2), color="red").save(project / "assets" / "images" / "logo.png")
    return project


def _snapshot(output: Path) -> dict[str, bytes]:
    return {
        p.relative_to(output).as_posix(): p.read_bytes()
        for p in sorted(output.rglob("*"))
        if p.is_file()
    }


def test_build_site_creates_output(tmp_path):
    project = create_project(tmp_path)
    result = build_site(project)
    output = project / "output"

    assert result.output_dir == output
    assert sorted(p.rel_path for p in result.pages) == [
        "_posts/2024-01-02-hello.md",
        "about.md",
        "index.html",
    ]
    assert [s.rel_path for s in result.static_files] == ["robots.txt"]
    assert result.feeds == ["sitemap.xml", "feed.xml"]
    assert set(_snapshot(output)) == {
        "index.html",
        "about/index.html",
        "2024/01/02/hello/index.html",
        "robots.txt",
        "assets/css/main.css",
        "assets/js/main.js",
        "assets/images/logo.png",
        "sitemap.xml",
        "feed.xml",
    }
    index = (output / "index.html").read_text(encoding="utf-8")
    assert '<a href="/2024/01/02/hello/">X</a>' in index
    assert (output / "about" / "index.html").read_text(encoding="utf-8").endswith(
        '<h1 id="about">About</h1>\n'
    )


def test_code_blocks_keep_template_tokens_literal(tmp_path):
    project = create_project(tmp_path, "title: Test\nbaseurl: /blog\n")
    build_site(project)
    post = (project / "output" / "2024" / "01" / "02" / "hello" / "index.html").read_text(
        encoding="utf-8"
    )
    assert "Base: /blog" in post
    assert "<pre><code>{{ site.baseurl }}\n</code></pre>" in post
    assert '<a href="/blog/about/">About</a>' in post
    assert post.startswith('<link href="/blog/assets/css/main.css"><article>')


def test_rebuilding_unchanged_content_is_byte_identical(tmp_path):
    project = create_project(tmp_path)
    build_site(project)
    first = _snapshot(project / "output")
    build_site(project)
    assert _snapshot(project / "output") == first


def test_touching_a_file_does_not_change_output(tmp_path):
    project = create_project(tmp_path)
    about = project / "site" / "about.md"
    os.utime(about, (1_000_000_000, 1_000_000_000))
    build_site(project)
    first = _snapshot(project / "output")
    os.utime(about, (1_600_000_000, 1_600_000_000))
    build_site(project)
    assert _snapshot(project / "output") == first
    assert "<loc>https://example.com/about/</loc></url>" in first["sitemap.xml"].decode()


def test_missing_layout_field_fails_build_without_writing(tmp_path):
    project = create_project(tmp_path)
    _write(project / "output" / "keep.txt", "previous build")
    _write(project / "site" / "bad.md", "---\ntitle: No layout\n---\nBody\n")

    with pytest.raises(MetadataError) as excinfo:
        build_site(project)
    assert excinfo.value.source_path == project / "site" / "bad.md"
    assert "layout" in excinfo.value.message
    assert (project / "output" / "keep.txt").exists()
    assert not (project / "output" / "index.html").exists()


def test_layout_defaults_satisfy_missing_layout(tmp_path):
    project = create_project(
        tmp_path, "title: Test\ndefaults:\n  pages:\n    layout: default\n"
    )
    _write(project / "site" / "plain.md", "---\ntitle: Plain\n---\nBody\n")
    build_site(project)
    assert (project / "output" / "plain" / "index.html").exists()


def test_duplicate_permalinks_are_rejected(tmp_path):
    project = create_project(tmp_path)
    site = project / "site"
    _write(site / "one.md", "---\nlayout: default\npermalink: /same/\n---\n1\n")
    _write(site / "two.md", "---\nlayout: default\npermalink: /same/\n---\n2\n")

    with pytest.raises(DuplicatePermalinkError) as excinfo:
        build_site(project)
    assert excinfo.value.output_path == "same/index.html"
    assert excinfo.value.source_path == site / "two.md"
    assert excinfo.value.other_path == site / "one.md"


def test_static_file_and_asset_collision(tmp_path):
    project = create_project(tmp_path)
    _write(project / "site" / "assets" / "css" / "main.css", "p{}")

    with pytest.raises(DuplicatePermalinkError) as excinfo:
        build_site(project)
    assert excinfo.value.source_path == project / "assets" / "css" / "main.css"
    assert excinfo.value.other_path == project / "site" / "assets" / "css" / "main.css"


def test_page_colliding_with_feed_is_rejected(tmp_path):
    project = create_project(tmp_path)
    _write(project / "site" / "feed.md", "---\nlayout: default\npermalink: /feed.xml\n---\n")

    with pytest.raises(DuplicatePermalinkError) as excinfo:
        build_site(project)
    assert excinfo.value.source_path == project / "inkpress.yaml"


def test_broken_asset_reference_fails_build(tmp_path):
    project = create_project(tmp_path)
    _write(
        project / "site" / "gallery.md",
        "---\nlayout: default\n---\n![x](/assets/images/missing.png)\n",
    )
    with pytest.raises(BrokenReferenceError) as excinfo:
        build_site(project)
    assert excinfo.value.reference == "/assets/images/missing.png"
    assert excinfo.value.source_path == project / "site" / "gallery.md"


def test_reference_checks_can_be_disabled(tmp_path):
    project = create_project(tmp_path, "title: Test\ncheck_references: false\n")
    _write(project / "site" / "gallery.md", "---\nlayout: default\n---\n[x](/nowhere/)\n")
    build_site(project)
    assert (project / "output" / "gallery" / "index.html").exists()


def test_references_outside_base_path_are_not_checked(tmp_path):
    project = create_project(tmp_path, "title: Test\nbaseurl: /blog\n")
    _write(project / "site" / "out.md", "---\nlayout: default\n---\n[x](/elsewhere/)\n")
    build_site(project)
    assert (project / "output" / "out" / "index.html").exists()


def test_hidden_post_renders_but_is_not_listed(tmp_path):
    project = create_project(tmp_path)
    _write(
        project / "site" / "_posts" / "2024-03-01-secret.md",
        "---\nlayout: post\ntitle: Secret\nhidden: true\n---\nShh\n",
    )
    result = build_site(project)
    output = project / "output"

    assert any(p.slug == "secret" for p in result.pages)
    assert "<p>Shh</p>" in (output / "2024" / "03" / "01" / "secret" / "index.html").read_text(
        encoding="utf-8"
    )
    assert "Secret" not in (output / "index.html").read_text(encoding="utf-8")
    assert "/secret/" not in (output / "sitemap.xml").read_text(encoding="utf-8")
    assert "/secret/" not in (output / "feed.xml").read_text(encoding="utf-8")


def test_feeds_skipped_without_site_url(tmp_path):
    project = create_project(tmp_path, "title: Test\n")
    result = build_site(project)
    assert result.feeds == []
    assert not (project / "output" / "sitemap.xml").exists()


def test_check_site_collects_every_problem(tmp_path):
    project = create_project(tmp_path)
    site = project / "site"
    _write(site / "a.md", "---\ntitle: A\n---\n")
    _write(site / "b.md", "---\nlayout: wide\n---\n")
    _write(site / "c.md", "---\nlayout: default\n---\n[x](/missing/)\n")

    problems = check_site(project)
    assert [type(p) for p in problems] == [
        MetadataError,
        LayoutNotFoundError,
        BrokenReferenceError,
    ]
    assert [p.source_path.name for p in problems] == ["a.md", "b.md", "c.md"]
    assert not (project / "output").exists()

    assert check_site(create_project(tmp_path / "clean")) == []


def test_clean_output_flag(tmp_path):
    project = create_project(tmp_path)
    _write(project / "output" / "stray.txt", "x")
    build_site(project, clean_output=False)
    assert (project / "output" / "stray.txt").exists()
    build_site(project)
    assert not (project / "output" / "stray.txt").exists()


def test_output_dir_override_and_base_url(tmp_path):
    project = create_project(tmp_path / "project")
    target = tmp_path / "elsewhere"
    result = build_site(project, base_url="/docs/", output_dir_override=target)
    assert result.output_dir == target
    assert result.config["baseurl"] == "/docs"
    assert 'href="/docs/assets/css/main.css"' in (target / "index.html").read_text(
        encoding="utf-8"
    )


@pytest.mark.parametrize("output_dir", [".", "site", "site/out", "assets", "assets/out", "data/cache/out"])
def test_output_dir_may_not_overlap_sources(tmp_path, output_dir):
    project = create_project(tmp_path, f"title: Test\noutput_dir: {output_dir}\n")
    with pytest.raises(ConfigError, match="overwrite project sources"):
        build_site(project)
    assert (project / "site" / "index.html").exists()


def test_output_dir_beside_sources_is_allowed(tmp_path):
    project = create_project(tmp_path, "title: Test\noutput_dir: public/site\n")
    result = build_site(project)
    assert result.output_dir == project / "public" / "site"
    assert (project / "public" / "site" / "index.html").exists()


def test_build_requires_site_directory(tmp_path):
    _write(tmp_path / "inkpress.yaml", "title: Empty\n")
    with pytest.raises(FileNotFoundError):
        build_site(tmp_path)


def test_asset_pipeline_processes_assets(tmp_path):
    project = create_project(tmp_path)
    _write(project / "assets" / "js" / "vendor.min.js", "var a = 1 ;")
    _write(project / "assets" / ".hidden" / "secret.txt", "x")
    _write(project / "assets" / ".DS_Store", "x")
    _write(project / "assets" / "images" / "broken.png", "not an image")
    output = tmp_path / "out"

    pipeline = AssetPipeline(project, output)
    assert [rel for _, rel in pipeline.iter_assets()] == [
        "assets/css/main.css",
        "assets/images/broken.png",
        "assets/images/logo.png",
        "assets/js/main.js",
        "assets/js/vendor.min.js",
    ]
    assert pipeline.run() == 5

    minified = (output / "assets" / "js" / "main.js").read_text(encoding="utf-8")
    assert "return 1+1" in minified
    vendor = output / "assets" / "js" / "vendor.min.js"
    assert vendor.read_text(encoding="utf-8") == "var a = 1 ;"
    broken = output / "assets" / "images" / "broken.png"
    assert broken.read_text(encoding="utf-8") == "not an image"
    with Image.open(output / "assets" / "images" / "logo.png") as img:
        assert img.size == (2, 2)
    assert not (output / "assets" / ".DS_Store").exists()


def test_asset_pipeline_without_js_minification(tmp_path):
    project = create_project(tmp_path)
    output = tmp_path / "out"
    AssetPipeline(project, output, minify_js=False).run()
    assert (output / "assets" / "js" / "main.js").read_text(encoding="utf-8") == (
        "function test(){ return 1 + 1; }"
    )


def test_asset_pipeline_missing_assets_and_static_copy(tmp_path):
    source = _write(tmp_path / "site" / "files" / "doc.pdf", "%PDF")
    pipeline = AssetPipeline(tmp_path, tmp_path / "out")
    assert pipeline.iter_assets() == []
    assert pipeline.run() == 0
    copied = pipeline.copy_static([StaticFile(path=source, rel_path="files/doc.pdf")])
    assert copied == 1
    assert (tmp_path / "out" / "files" / "doc.pdf").read_text(encoding="utf-8") == "%PDF"


def test_load_config_defaults_and_validation(tmp_path):
    config = load_config(tmp_path)
    assert config["permalink"] == "pretty"
    assert config["baseurl"] == ""
    assert config["exclude"] == []

    _write(tmp_path / "inkpress.yaml", "baseurl: /blog/\nurl: https://ex.org/\nextra: 1\n")
    config = load_config(tmp_path)
    assert config["baseurl"] == "/blog"
    assert config["url"] == "https://ex.org"
    assert config["extra"] == 1

    for text, needle in [
        ("baseurl: blog\n", "baseurl"),
        ("exclude: drafts\n", "exclude"),
        ("defaults: [1]\n", "defaults"),
        ("- a\n", "mapping"),
        ("title: [oops\n", "line"),
    ]:
        _write(tmp_path / "inkpress.yaml", text)
        with pytest.raises(ConfigError, match=needle):
            load_config(tmp_path)


def test_normalize_baseurl():
    assert normalize_baseurl(None) == ""
    assert normalize_baseurl("/") == ""
    assert normalize_baseurl("/a/b/") == "/a/b"
    with pytest.raises(ValueError):
        normalize_baseurl("a")
    with pytest.raises(ValueError):
        normalize_baseurl(3)


def test_load_build_config_overrides(tmp_path):
    _write(tmp_path / "inkpress.yaml", "url: https://ex.org\nbaseurl: /a\n")
    config = load_build_config(tmp_path, base_url="/", site_url="http://localhost:4000/")
    assert config["baseurl"] == ""
    assert config["url"] == "http://localhost:4000"
    with pytest.raises(ConfigError):
        load_build_config(tmp_path, base_url="nope")


def test_load_data(tmp_path):
    assert load_data(tmp_path) == {}
    _write(tmp_path / "data" / "site.yaml", "author: Ana\n")
    _write(tmp_path / "data" / "nav.yml", "- label: Home\n")
    _write(tmp_path / "data" / "empty.yaml", "")
    assert load_data(tmp_path) == {"author": "Ana", "nav": [{"label": "Home"}]}

    _write(tmp_path / "data" / "site.yaml", "- not a mapping\n")
    with pytest.raises(ConfigError):
        load_data(tmp_path)
