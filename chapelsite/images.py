"""
Post-build image optimization.

Walks the generated HTML, and for every photographic <img> writes resized
AVIF/WebP variants plus the original format, then swaps the tag for:

  <picture>
    <source type="image/avif" srcset="/assets/images/optimized/hero-400w.avif 400w, ..." sizes="100vw">
    <source type="image/webp" srcset="..." sizes="100vw">
    <img src="/assets/images/optimized/hero-1600w.jpeg" alt="..." srcset="..." sizes="100vw"
         width="1600" height="900" loading="lazy">
  </picture>

Variant names are <name>-<width>w.<ext>, so unchanged sources give the same
file names on every build.
"""
import re
import sys
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import unquote, urlsplit

from bs4 import BeautifulSoup  # pip install beautifulsoup4
from PIL import Image, ImageOps  # pip install pillow

MIME_TYPES = {
    "avif": "image/avif",
    "webp": "image/webp",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
}

# our extension -> Pillow format name
PIL_FORMATS = {
    "avif": "AVIF",
    "webp": "WEBP",
    "jpeg": "JPEG",
    "png": "PNG",
    "gif": "GIF",
}

SAVE_OPTIONS = {
    "avif": {"quality": 60},
    "webp": {"quality": 80, "method": 6},
    "jpeg": {"quality": 82, "optimize": True, "progressive": True},
    "png": {"optimize": True},
    "gif": {},
}

DIMENSION_RE = re.compile(r"^\s*(\d+)")

# Attributes set explicitly on the rewritten <img>; everything else is copied.
REWRITTEN_ATTRS = {"src", "srcset", "sizes", "width", "height", "alt", "class", "loading"}


@dataclass(frozen=True)
class ImageOptions:
    site_dir: Path
    source_dir: Path
    output_dir: Path
    url_path: str
    widths: tuple = (400, 800, 1200, 1600)
    formats: tuple = ("avif", "webp")
    skip_patterns: tuple = ("favicon", "logo", "icon")
    min_dimension: int = 100

    @classmethod
    def from_config(cls, cfg: dict) -> "ImageOptions":
        site_dir = Path(cfg["site_dir"])
        url_path = cfg["image_url_path"]
        if not url_path.endswith("/"):
            url_path += "/"
        return cls(
            site_dir=site_dir,
            source_dir=Path(cfg["source_dir"]),
            output_dir=site_dir / cfg["image_output_dir"],
            url_path=url_path,
            widths=tuple(cfg["image_widths"]),
            formats=tuple(cfg["image_formats"]),
            skip_patterns=tuple(cfg["image_skip_patterns"]),
            min_dimension=cfg["image_min_dimension"],
        )


@dataclass(frozen=True)
class Variant:
    format: str
    width: int
    height: int
    url: str
    path: Path

    @property
    def mime_type(self) -> str:
        return MIME_TYPES[self.format]

    @property
    def srcset_entry(self) -> str:
        return f"{self.url} {self.width}w"


def parse_dimension(value) -> int | None:
    """'1200' -> 1200, '50px' -> 50, anything else -> None."""
    if value is None:
        return None
    m = DIMENSION_RE.match(str(value))
    return int(m.group(1)) if m else None


@dataclass
class ImageReference:
    src: str
    alt: str = ""
    css_classes: list = field(default_factory=list)
    loading: str = "lazy"
    sizes: str = "100vw"
    width: int | None = None
    height: int | None = None

    @classmethod
    def from_tag(cls, img) -> "ImageReference":
        classes = img.get("class") or []
        if isinstance(classes, str):
            classes = classes.split()
        return cls(
            src=(img.get("src") or "").strip(),
            alt=img.get("alt") or "",
            css_classes=list(classes),
            loading=img.get("loading") or "lazy",
            sizes=img.get("sizes") or "100vw",
            width=parse_dimension(img.get("width")),
            height=parse_dimension(img.get("height")),
        )


def is_external(src: str) -> bool:
    lower = src.lower()
    return lower.startswith(("http://", "https://", "//", "data:"))


def should_skip_image(src: str, width: int | None = None, height: int | None = None, *, skip_patterns=("favicon", "logo", "icon"), min_dimension: int = 100) -> bool:
    """
    True for references that are not worth (or not possible) to re-encode:
    logos/icons by name, tiny declared sizes, SVGs and external URLs.
    """
    if not src:
        return True
    if any(re.search(pattern, src, re.IGNORECASE) for pattern in skip_patterns):
        return True
    if (width is not None and width < min_dimension) or (height is not None and height < min_dimension):
        return True
    if urlsplit(src).path.lower().endswith(".svg"):
        return True
    if is_external(src):
        return True
    return False


def resolve_image_path(src: str, html_file: Path, site_dir: Path, source_dir: Path) -> Path | None:
    """
    Find the file behind an <img src>.

    "/assets/a.jpg" is looked up in the built site first, then in the source
    tree; "img/a.jpg" is relative to the HTML file. None if nothing exists.
    """
    path = unquote(urlsplit(src).path)
    if not path:
        return None
    if path.startswith("/"):
        rel = path.lstrip("/")
        candidates = [site_dir / rel, source_dir / rel]
    else:
        candidates = [html_file.parent / path]
    for candidate in candidates:
        if candidate.is_file():
            return candidate
    return None


def target_widths(widths, original_width: int) -> list[int]:
    """
    Never upscale: widths at or above the source width collapse into the
    source width itself.
    """
    out = sorted({w for w in widths if w < original_width})
    if any(w >= original_width for w in widths):
        out.append(original_width)
    return out


def fallback_format(pil_format: str | None) -> str:
    """Extension for the original-format fallback (unknown formats become jpeg)."""
    for ext, name in PIL_FORMATS.items():
        if name == pil_format and ext in ("jpeg", "png", "gif", "webp"):
            return ext
    return "jpeg"


def can_encode(ext: str) -> bool:
    Image.init()
    return PIL_FORMATS.get(ext) in Image.SAVE


def variant_filename(source: Path, width: int, ext: str) -> str:
    return f"{source.stem}-{width}w.{ext}"


def _prepare_mode(im: Image.Image, ext: str) -> Image.Image:
    if ext == "jpeg" and im.mode not in ("RGB", "L"):
        return im.convert("RGB")
    if ext in ("webp", "avif") and im.mode not in ("RGB", "RGBA"):
        return im.convert("RGBA" if "A" in im.getbands() or im.mode == "P" else "RGB")
    return im


def _encode(im: Image.Image, dest: Path, ext: str) -> None:
    dest.parent.mkdir(parents=True, exist_ok=True)
    _prepare_mode(im, ext).save(dest, PIL_FORMATS[ext], **SAVE_OPTIONS[ext])


def _is_fresh(dest: Path, source: Path) -> bool:
    return dest.exists() and dest.stat().st_mtime >= source.stat().st_mtime


def generate_variants(source: Path, opts: ImageOptions) -> dict[str, list[Variant]]:
    """
    Encode source at every target width in each configured modern format
    and in its own format.

    Returns {ext: [Variant, ...]} with widths ascending; the fallback format
    is always the last key. Modern formats the local Pillow cannot write are
    left out. Variants already newer than the source are reused.
    """
    with Image.open(source) as opened:
        pil_format = opened.format
        im = ImageOps.exif_transpose(opened)
        im.load()

    fallback = fallback_format(pil_format)
    orig_w, orig_h = im.size
    widths = target_widths(opts.widths, orig_w)

    formats = [f for f in opts.formats if f != fallback and f in PIL_FORMATS]
    variants: dict[str, list[Variant]] = {}

    for ext in formats + [fallback]:
        if ext != fallback and not can_encode(ext):
            print(f"WARNING: this Pillow build cannot write {ext}; skipping that format", file=sys.stderr)
            continue

        items = []
        try:
            for w in widths:
                h = max(1, round(orig_h * w / orig_w))
                name = variant_filename(source, w, ext)
                dest = opts.output_dir / name
                if not _is_fresh(dest, source):
                    resized = im if w == orig_w else im.resize((w, h), Image.LANCZOS)
                    _encode(resized, dest, ext)
                items.append(Variant(format=ext, width=w, height=h, url=opts.url_path + name, path=dest))
        except (OSError, ValueError, KeyError) as e:
            if ext == fallback:
                raise
            print(f"WARNING: could not encode {source.name} as {ext}: {e}", file=sys.stderr)
            continue
        variants[ext] = items

    return variants


def build_picture(soup: BeautifulSoup, img, ref: ImageReference, variants: dict[str, list[Variant]]):
    """Return a <picture> tag replacing img, carrying over its attributes."""
    fallback_ext = list(variants)[-1]
    fallback = variants[fallback_ext]
    largest = fallback[-1]

    picture = soup.new_tag("picture")
    for ext, items in variants.items():
        if ext == fallback_ext:
            continue
        source = soup.new_tag("source")
        source["type"] = MIME_TYPES[ext]
        source["srcset"] = ", ".join(v.srcset_entry for v in items)
        source["sizes"] = ref.sizes
        picture.append(source)

    new_img = soup.new_tag("img")
    new_img["src"] = largest.url
    new_img["alt"] = ref.alt
    if ref.css_classes:
        new_img["class"] = ref.css_classes
    new_img["loading"] = ref.loading
    new_img["srcset"] = ", ".join(v.srcset_entry for v in fallback)
    new_img["sizes"] = ref.sizes
    new_img["width"] = str(largest.width)
    new_img["height"] = str(largest.height)
    for name, value in img.attrs.items():
        if name not in REWRITTEN_ATTRS:
            new_img[name] = value
    picture.append(new_img)
    return picture


@dataclass
class OptimizeReport:
    files_scanned: int = 0
    files_rewritten: int = 0
    images_processed: int = 0
    images_skipped: int = 0


def process_html_file(path: Path, opts: ImageOptions, *, log=print) -> tuple[int, int]:
    """
    Rewrite the qualifying <img> tags of one HTML file.

    Returns (processed, skipped). The file is only written back when at
    least one image was replaced.
    """
    text = path.read_text(encoding="utf-8")
    soup = BeautifulSoup(text, "html.parser")
    images = soup.find_all("img")
    if not images:
        return 0, 0

    log(f"Processing {path} ({len(images)} images)")
    processed = 0
    skipped = 0

    for img in images:
        ref = ImageReference.from_tag(img)
        if not ref.src:
            continue

        # already rewritten by an earlier run
        if img.find_parent("picture"):
            skipped += 1
            continue

        if should_skip_image(ref.src, ref.width, ref.height, skip_patterns=opts.skip_patterns, min_dimension=opts.min_dimension):
            log(f"  Skipped: {ref.src}")
            skipped += 1
            continue

        source = resolve_image_path(ref.src, path, opts.site_dir, opts.source_dir)
        if source is None:
            print(f"WARNING: source image not found: {ref.src} (in {path})", file=sys.stderr)
            skipped += 1
            continue

        log(f"  Processing: {ref.src}")
        try:
            variants = generate_variants(source, opts)
        except (OSError, ValueError, Image.DecompressionBombError) as e:
            print(f"WARNING: error processing {ref.src}: {e}", file=sys.stderr)
            skipped += 1
            continue

        img.replace_with(build_picture(soup, img, ref, variants))
        processed += 1
        log("  Generated responsive images")

    if processed > 0:
        path.write_text(str(soup), encoding="utf-8")
        log(f"  Saved ({processed} optimized, {skipped} skipped)")
    else:
        log(f"  No images to optimize ({skipped} skipped)")
    return processed, skipped


def optimize_site(ctx) -> OptimizeReport:
    """Run the image pass over every .html file under the site directory."""
    opts = ImageOptions.from_config(ctx.cfg)
    if not opts.site_dir.is_dir():
        raise FileNotFoundError(f"Site directory not found: {opts.site_dir}")

    ctx.log("Starting image optimization...")
    html_files = sorted(opts.site_dir.rglob("*.html"))
    ctx.log(f"Found {len(html_files)} HTML files")

    report = OptimizeReport()
    for html_file in html_files:
        report.files_scanned += 1
        try:
            processed, skipped = process_html_file(html_file, opts, log=ctx.log)
        except (OSError, UnicodeDecodeError) as e:
            print(f"WARNING: could not process {html_file}: {e}", file=sys.stderr)
            continue
        report.images_processed += processed
        report.images_skipped += skipped
        if processed:
            report.files_rewritten += 1

    ctx.log("Image optimization complete!")
    return report
