import pytest
from bs4 import BeautifulSoup
from PIL import Image

from chapelsite import images
from chapelsite.images import (
    ImageOptions,
    process_html_file,
    resolve_image_path,
    should_skip_image,
    target_widths,
)

PAGE = """<!DOCTYPE html>
<html><body>
<img src="/assets/images/photo.jpg" alt="Church" class="rounded w-full" data-caption="Front">
<img src="/assets/img/logo.png" width="300" height="300" alt="Logo">
</body></html>
"""


def make_image(path, size=(1000, 500), fmt="JPEG", mode="RGB"):
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.new(mode, size, "steelblue").save(path, fmt)
    return path


@pytest.fixture
def site(tmp_path):
    site_dir = tmp_path / "_site"
    make_image(site_dir / "assets" / "images" / "photo.jpg")
    make_image(site_dir / "assets" / "img" / "logo.png", (300, 300), "PNG")
    return site_dir


@pytest.fixture
def opts(site, tmp_path):
    return ImageOptions(
        site_dir=site,
        source_dir=tmp_path / "src",
        output_dir=site / "assets" / "images" / "optimized",
        url_path="/assets/images/optimized/",
        formats=("webp",),
    )


def write_page(site, html=PAGE, name="index.html"):
    path = site / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(html, encoding="utf-8")
    return path


def quiet(msg):
    pass


def test_qualifying_image_becomes_picture(site, opts):
    page = write_page(site)
    assert process_html_file(page, opts, log=quiet) == (1, 1)

    soup = BeautifulSoup(page.read_text(encoding="utf-8"), "html.parser")
    (picture,) = soup.find_all("picture")
    (source,) = picture.find_all("source")
    assert source["type"] == "image/webp"
    assert source["srcset"] == (
        "/assets/images/optimized/photo-400w.webp 400w, "
        "/assets/images/optimized/photo-800w.webp 800w, "
        "/assets/images/optimized/photo-1000w.webp 1000w"
    )
    assert source["sizes"] == "100vw"

    img = picture.find("img")
    assert img["src"] == "/assets/images/optimized/photo-1000w.jpeg"
    assert img["alt"] == "Church"
    assert img["class"] == ["rounded", "w-full"]
    assert img["loading"] == "lazy"
    assert img["width"] == "1000"
    assert img["height"] == "500"
    assert img["data-caption"] == "Front"
    assert "photo-400w.jpeg 400w" in img["srcset"]

    names = sorted(p.name for p in opts.output_dir.iterdir())
    assert names == [
        "photo-1000w.jpeg",
        "photo-1000w.webp",
        "photo-400w.jpeg",
        "photo-400w.webp",
        "photo-800w.jpeg",
        "photo-800w.webp",
    ]
    with Image.open(opts.output_dir / "photo-400w.webp") as im:
        assert im.size == (400, 200)


def test_logo_is_left_alone(site, opts):
    page = write_page(site)
    process_html_file(page, opts, log=quiet)
    soup = BeautifulSoup(page.read_text(encoding="utf-8"), "html.parser")
    logo = soup.find("img", src="/assets/img/logo.png")
    assert logo is not None
    assert logo.find_parent("picture") is None


def test_file_without_qualifying_images_is_untouched(site, opts):
    html = (
        "<html><body><img src=/assets/img/logo.png>"
        "<img src='https://cdn.example.org/a.jpg'>"
        "<img src='/assets/images/photo.jpg' width=50 height=50>"
        "<img src='/assets/images/map.svg'></body></html>"
    )
    page = write_page(site, html)
    before = page.read_bytes()
    assert process_html_file(page, opts, log=quiet) == (0, 4)
    assert page.read_bytes() == before
    assert not opts.output_dir.exists()


def test_second_run_is_a_no_op(site, opts):
    page = write_page(site)
    process_html_file(page, opts, log=quiet)
    after_first = page.read_bytes()
    mtimes = {p.name: p.stat().st_mtime_ns for p in opts.output_dir.iterdir()}

    processed, _ = process_html_file(page, opts, log=quiet)
    assert processed == 0
    assert page.read_bytes() == after_first
    assert {p.name: p.stat().st_mtime_ns for p in opts.output_dir.iterdir()} == mtimes


def test_missing_source_is_skipped_and_others_processed(site, opts, capsys):
    html = PAGE.replace("</body>", '<img src="/assets/images/gone.jpg" alt="">\n</body>')
    page = write_page(site, html)
    assert process_html_file(page, opts, log=quiet) == (1, 2)
    assert "source image not found: /assets/images/gone.jpg" in capsys.readouterr().err
    soup = BeautifulSoup(page.read_text(encoding="utf-8"), "html.parser")
    assert soup.find("img", src="/assets/images/gone.jpg") is not None


def test_relative_src_resolves_next_to_the_page(site, opts):
    make_image(site / "about" / "team.jpg", (600, 400))
    page = write_page(site, '<p><img src="team.jpg" alt="Our team"></p>', "about/index.html")
    assert process_html_file(page, opts, log=quiet) == (1, 0)
    # 600px source: widths above it collapse to the source width
    assert (opts.output_dir / "team-600w.jpeg").exists()
    assert not (opts.output_dir / "team-800w.jpeg").exists()


def test_site_copy_wins_over_source_copy(tmp_path):
    site_dir = tmp_path / "_site"
    source_dir = tmp_path / "src"
    in_site = make_image(site_dir / "assets" / "a.jpg")
    make_image(source_dir / "assets" / "a.jpg")
    make_image(source_dir / "assets" / "b.jpg")
    html = site_dir / "index.html"

    assert resolve_image_path("/assets/a.jpg", html, site_dir, source_dir) == in_site
    assert resolve_image_path("/assets/b.jpg?v=2", html, site_dir, source_dir) == source_dir / "assets" / "b.jpg"
    assert resolve_image_path("/assets/c.jpg", html, site_dir, source_dir) is None


def test_png_keeps_png_fallback(site, opts):
    make_image(site / "assets" / "images" / "banner.png", (500, 250), "PNG", "RGBA")
    page = write_page(site, '<img src="/assets/images/banner.png" alt="Banner">')
    process_html_file(page, opts, log=quiet)
    img = BeautifulSoup(page.read_text(encoding="utf-8"), "html.parser").find("img")
    assert img["src"] == "/assets/images/optimized/banner-500w.png"


def test_unavailable_modern_format_is_dropped(site, opts, monkeypatch, capsys):
    monkeypatch.setattr(images, "can_encode", lambda ext: ext != "avif")
    opts = ImageOptions(
        site_dir=opts.site_dir,
        source_dir=opts.source_dir,
        output_dir=opts.output_dir,
        url_path=opts.url_path,
        formats=("avif", "webp"),
    )
    page = write_page(site)
    assert process_html_file(page, opts, log=quiet) == (1, 1)
    soup = BeautifulSoup(page.read_text(encoding="utf-8"), "html.parser")
    assert [s["type"] for s in soup.find_all("source")] == ["image/webp"]
    assert "cannot write avif" in capsys.readouterr().err


def test_images_already_in_picture_are_skipped(site, opts):
    html = '<picture><source type="image/webp" srcset="x.webp"><img src="/assets/images/photo.jpg"></picture>'
    page = write_page(site, html)
    assert process_html_file(page, opts, log=quiet) == (0, 1)


@pytest.mark.parametrize(
    "src,width,height,skip",
    [
        ("/assets/images/photo.jpg", None, None, False),
        ("/assets/images/photo.jpg", 1200, 800, False),
        ("/assets/images/photo.jpg", 99, 800, True),
        ("/assets/images/photo.jpg", 800, 99, True),
        ("/assets/images/photo.jpg", 100, 100, False),
        ("/favicon.ico", None, None, True),
        ("/assets/Church-LOGO.png", None, None, True),
        ("/assets/icons/cross.png", None, None, True),
        ("/assets/seal.SVG", None, None, True),
        ("http://example.org/a.jpg", None, None, True),
        ("//cdn.example.org/a.jpg", None, None, True),
        ("data:image/png;base64,AAAA", None, None, True),
        ("", None, None, True),
    ],
)
def test_should_skip_image(src, width, height, skip):
    assert should_skip_image(src, width, height) is skip


@pytest.mark.parametrize(
    "original,expected",
    [
        (2000, [400, 800, 1200, 1600]),
        (1600, [400, 800, 1200, 1600]),
        (1000, [400, 800, 1000]),
        (300, [300]),
    ],
)
def test_target_widths_never_upscale(original, expected):
    assert target_widths([400, 800, 1200, 1600], original) == expected
