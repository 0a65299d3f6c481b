from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, as_completed
import io
import logging
import os
import random
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Sequence, Tuple

from PIL import Image, ImageDraw, ImageOps


# allow large images; keep a very high limit to avoid PIL warning spam
Image.MAX_IMAGE_PIXELS = max(int(getattr(Image, "MAX_IMAGE_PIXELS", 0) or 0), 250_000_000)

MIN_GALLERY_IMAGES = 2
MAX_GALLERY_IMAGES = 20

# image count per collage, hero included
MIN_IMAGES = 2
MAX_IMAGES = 6

SPLIT_RANGE = (0.3, 0.7)
SQUARISH_RANGE = (0.8, 1.2)

JPEG_QUALITY = 92
BACKGROUND = (255, 255, 255)
BORDER_COLOR = (255, 255, 255)
BORDER_REL = 0.005
BORDER_MIN = 2


def setup_logging(name: str, level: int = logging.INFO) -> logging.Logger:
    """Return a logger with a stream handler attached once.

    The engine only creates module loggers; callers use this to see them,
    e.g. ``setup_logging("hero_collage", logging.DEBUG)`` for per-collage
    timings or ``setup_logging("collage_batch")`` for batch milestones.
    """
    log = logging.getLogger(name)
    if not log.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
        log.addHandler(handler)
    log.setLevel(level)
    return log


logger = logging.getLogger(__name__)


class CollageError(Exception):
    """Base error for collage generation."""


class InvalidInput(CollageError, ValueError):
    """Inputs rejected before any generation work starts."""


class DecodeFailure(CollageError):
    def __init__(self, name: str, reason: str) -> None:
        super().__init__(f"cannot decode image {name!r}: {reason}")
        self.name = name


class EncodeFailure(CollageError):
    pass


def _effective_workers(workers: int) -> int:
    if workers <= 0:
        cpu = os.cpu_count() or 4
        return min(32, max(1, cpu * 2))
    return max(1, int(workers))


@dataclass(frozen=True)
class AspectRatio:
    width: int
    height: int
    label: str


ASPECT_RATIOS: dict[str, AspectRatio] = {
    "1:1": AspectRatio(1, 1, "Square (1:1)"),
    "9:16": AspectRatio(9, 16, "Portrait (9:16)"),
    "16:9": AspectRatio(16, 9, "Landscape (16:9)"),
    "3:4": AspectRatio(3, 4, "Portrait (3:4)"),
    "4:3": AspectRatio(4, 3, "Landscape (4:3)"),
    "1200:628": AspectRatio(1200, 628, "Social Post (1200x628)"),
    "900:1600": AspectRatio(900, 1600, "Story (900x1600)"),
}

# long side in pixels
QUALITY_PRESETS: dict[str, int] = {
    "2K": 2048,
    "4K": 3840,
}


@dataclass(frozen=True)
class CanvasSpec:
    width: int
    height: int


@dataclass(frozen=True)
class Rect:
    x: int
    y: int
    w: int
    h: int

    @property
    def area(self) -> int:
        return self.w * self.h

    @property
    def aspect(self) -> float:
        return self.w / self.h if self.h else 1.0


@dataclass(frozen=True)
class SourceImage:
    name: str
    data: bytes = field(repr=False)

    @classmethod
    def from_path(cls, path: Path | str) -> "SourceImage":
        p = Path(path)
        return cls(name=p.name, data=p.read_bytes())


@dataclass(frozen=True)
class CollageSpec:
    width: int
    height: int
    count: int


@dataclass
class CollageArtifact:
    name: str
    data: bytes = field(repr=False)
    used_images: List[SourceImage]
    width: int
    height: int
    layout: List[Rect]
    assignment: List[SourceImage] = field(repr=False)
    seed: int | None = None


@dataclass(frozen=True)
class CoverTransform:
    x: float
    y: float
    w: float
    h: float


def resolve_canvas(aspect_ratio: str, quality: str) -> CanvasSpec:
    if aspect_ratio not in ASPECT_RATIOS:
        raise InvalidInput(f"unknown aspect ratio {aspect_ratio!r}; use one of {', '.join(ASPECT_RATIOS)}")
    if quality not in QUALITY_PRESETS:
        raise InvalidInput(f"unknown quality preset {quality!r}; use one of {', '.join(QUALITY_PRESETS)}")

    long_side = QUALITY_PRESETS[quality]
    ar = ASPECT_RATIOS[aspect_ratio]
    if ar.width >= ar.height:
        return CanvasSpec(long_side, max(1, int(round(long_side * (ar.height / ar.width)))))
    return CanvasSpec(max(1, int(round(long_side * (ar.width / ar.height)))), long_side)


def validate_inputs(hero: SourceImage | None, gallery: Sequence[SourceImage] | None) -> None:
    if hero is None:
        raise InvalidInput("a hero image is required")
    n = len(gallery) if gallery is not None else 0
    if n < MIN_GALLERY_IMAGES:
        raise InvalidInput(f"need at least {MIN_GALLERY_IMAGES} gallery images, got {n}")
    if n > MAX_GALLERY_IMAGES:
        raise InvalidInput(f"at most {MAX_GALLERY_IMAGES} gallery images are supported, got {n}")


def pick_count(rng: random.Random, gallery_size: int) -> int:
    hi = min(MAX_IMAGES, gallery_size + 1)
    return rng.randint(MIN_IMAGES, hi)


def pick_subset(rng: random.Random, gallery: Sequence[SourceImage], count: int) -> List[SourceImage]:
    shuffled = rng.sample(list(gallery), len(gallery))
    return shuffled[: count - 1]


def partition(width: int, height: int, count: int, rng: random.Random | None = None) -> List[Rect]:
    """Split the canvas into ``count`` rectangles by repeatedly halving the largest one.

    Squarish rectangles pick the split axis at random, others are cut across
    their longer side. The cut falls somewhere in ``SPLIT_RANGE`` of the
    extent; the first child is truncated and the second takes the remainder,
    so the result always tiles the canvas exactly.
    """
    if width <= 0 or height <= 0:
        raise ValueError("canvas size must be positive")
    if count < 1:
        raise ValueError("count must be >= 1")
    if count > width * height:
        raise ValueError(f"cannot fit {count} rectangles into {width}x{height}")

    rects: List[Rect] = [Rect(0, 0, width, height)]
    if count == 1:
        return rects

    if rng is None:
        rng = random.Random()

    lo_sq, hi_sq = SQUARISH_RANGE
    lo, hi = SPLIT_RANGE

    while len(rects) < count:
        # max() keeps the first of equal areas
        idx = max(range(len(rects)), key=lambda i: rects[i].area)
        r = rects.pop(idx)

        if lo_sq < r.aspect < hi_sq:
            split_vert = rng.random() < 0.5
        else:
            split_vert = r.w > r.h

        ratio = rng.uniform(lo, hi)

        if split_vert and r.w < 2:
            split_vert = False
        elif not split_vert and r.h < 2:
            split_vert = True

        if split_vert:
            w1 = max(1, min(r.w - 1, int(r.w * ratio)))
            a = Rect(r.x, r.y, w1, r.h)
            b = Rect(r.x + w1, r.y, r.w - w1, r.h)
        else:
            h1 = max(1, min(r.h - 1, int(r.h * ratio)))
            a = Rect(r.x, r.y, r.w, h1)
            b = Rect(r.x, r.y + h1, r.w, r.h - h1)

        rects.append(a)
        rects.append(b)

    return rects


def hero_slot(layout: Sequence[Rect]) -> int:
    if not layout:
        raise ValueError("layout is empty")
    return max(range(len(layout)), key=lambda i: layout[i].area)


def assign_slots(layout: Sequence[Rect], hero: SourceImage, gallery_subset: Sequence[SourceImage]) -> List[SourceImage]:
    """Bind the hero to the largest rectangle and the subset, in order, to the rest."""
    if len(gallery_subset) != len(layout) - 1:
        raise ValueError(f"need {len(layout) - 1} gallery images for {len(layout)} slots, got {len(gallery_subset)}")

    hero_idx = hero_slot(layout)
    rest = iter(gallery_subset)
    return [hero if i == hero_idx else next(rest) for i in range(len(layout))]


def open_image(src: SourceImage) -> Image.Image:
    try:
        img = Image.open(io.BytesIO(src.data))
        img = ImageOps.exif_transpose(img)
        img.load()
    except (OSError, ValueError, SyntaxError, Image.DecompressionBombError) as exc:
        raise DecodeFailure(src.name, str(exc)) from exc

    w, h = img.size
    if w <= 0 or h <= 0:
        raise DecodeFailure(src.name, "empty image")
    if img.mode in ("LA", "PA") or (img.mode != "RGBA" and "transparency" in img.info):
        img = img.convert("RGBA")
    elif img.mode not in ("RGB", "RGBA"):
        img = img.convert("RGB")
    return img


def safe_resize(
    img: Image.Image,
    size: Tuple[int, int],
    resample: Image.Resampling = Image.Resampling.LANCZOS,
    box: Tuple[float, float, float, float] | None = None,
) -> Image.Image:
    w, h = size
    if w <= 0 or h <= 0:
        raise ValueError("resize size must be positive")
    return img.resize((w, h), resample=resample, box=box)


def cover_transform(img_w: int, img_h: int, rect: Rect) -> CoverTransform:
    ir = img_w / img_h
    rr = rect.w / rect.h

    if ir > rr:
        render_h = float(rect.h)
        render_w = rect.h * ir
        return CoverTransform(rect.x - (render_w - rect.w) / 2, float(rect.y), render_w, render_h)

    render_w = float(rect.w)
    render_h = rect.w / ir
    return CoverTransform(float(rect.x), rect.y - (render_h - rect.h) / 2, render_w, render_h)


def cover_tile(
    img: Image.Image,
    rect: Rect,
    resample: Image.Resampling = Image.Resampling.LANCZOS,
) -> Image.Image:
    """Scale and center-crop ``img`` to exactly ``rect.w`` x ``rect.h``.

    Only the part of the source that ends up visible is resampled, so the
    full rendered size is never allocated.
    """
    t = cover_transform(img.width, img.height, rect)

    # rect mapped back into source pixels
    scale = t.w / img.width
    sw = min(img.width, rect.w / scale)
    sh = min(img.height, rect.h / scale)
    sx = min(max(0.0, (rect.x - t.x) / scale), img.width - sw)
    sy = min(max(0.0, (rect.y - t.y) / scale), img.height - sh)
    box = (sx, sy, min(float(img.width), sx + sw), min(float(img.height), sy + sh))
    return safe_resize(img, (rect.w, rect.h), resample=resample, box=box)


def _paste_tile(canvas: Image.Image, tile: Image.Image, rect: Rect) -> None:
    mask = tile if tile.mode == "RGBA" else None
    canvas.paste(tile, (rect.x, rect.y), mask=mask)


def draw_cover(canvas: Image.Image, img: Image.Image, rect: Rect) -> CoverTransform:
    _paste_tile(canvas, cover_tile(img, rect), rect)
    return cover_transform(img.width, img.height, rect)


def border_width(canvas_width: int) -> int:
    return max(BORDER_MIN, int(round(canvas_width * BORDER_REL)))


def stroke_border(canvas: Image.Image, rect: Rect, width: int | None = None) -> None:
    # centered on the edge like a canvas strokeRect; PIL clips to the image
    lw = border_width(canvas.width) if width is None else width
    inner = lw // 2
    outer = lw - inner
    x0 = rect.x - inner
    y0 = rect.y - inner
    x1 = rect.x + rect.w - 1 + outer
    y1 = rect.y + rect.h - 1 + outer
    ImageDraw.Draw(canvas).rectangle((x0, y0, x1, y1), outline=BORDER_COLOR, width=lw)


def compose(
    layout: Sequence[Rect],
    assignment: Sequence[SourceImage],
    canvas: CanvasSpec,
    workers: int = 0,
    resample: Image.Resampling = Image.Resampling.LANCZOS,
) -> Image.Image:
    """Paint every assigned image into its rectangle on a fresh white canvas.

    Decoding and cover-cropping run on a thread pool; all writes to the canvas
    happen on the calling thread as the tiles arrive.
    """
    if len(layout) != len(assignment):
        raise ValueError("layout and assignment differ in length")

    out = Image.new("RGB", (canvas.width, canvas.height), color=BACKGROUND)
    lw = border_width(canvas.width)

    def prepare_one(i: int) -> tuple[int, Image.Image]:
        img = open_image(assignment[i])
        return i, cover_tile(img, layout[i], resample=resample)

    def paint(i: int, tile: Image.Image) -> None:
        _paste_tile(out, tile, layout[i])
        stroke_border(out, layout[i], lw)

    n_workers = _effective_workers(workers)
    if n_workers <= 1 or len(layout) <= 2:
        for i in range(len(layout)):
            paint(*prepare_one(i))
    else:
        with ThreadPoolExecutor(max_workers=min(n_workers, len(layout))) as ex:
            futs = [ex.submit(prepare_one, i) for i in range(len(layout))]
            for fut in as_completed(futs):
                paint(*fut.result())

    return out


def encode_jpeg(img: Image.Image, quality: int = JPEG_QUALITY) -> bytes:
    buf = io.BytesIO()
    try:
        img.save(buf, format="JPEG", quality=quality, subsampling=1, optimize=True)
    except (OSError, ValueError) as exc:
        raise EncodeFailure(f"cannot encode collage as JPEG: {exc}") from exc
    return buf.getvalue()


def collage_name(index: int) -> str:
    return f"Collage-{index}.jpg"


def assemble(
    hero: SourceImage,
    gallery: Sequence[SourceImage],
    aspect_ratio: str,
    quality: str,
    seed: int | None = None,
    *,
    rng: random.Random | None = None,
    index: int = 1,
    workers: int = 0,
) -> CollageArtifact:
    """Build one collage with the hero in its largest rectangle.

    ``rng`` takes precedence over ``seed``. Any decode or encode failure
    propagates; nothing partial is returned.
    """
    validate_inputs(hero, gallery)
    canvas = resolve_canvas(aspect_ratio, quality)

    if rng is None:
        rng = random.Random(seed)

    count = pick_count(rng, len(gallery))
    subset = pick_subset(rng, gallery, count)
    spec = CollageSpec(canvas.width, canvas.height, count)

    t0 = time.perf_counter()
    layout = partition(spec.width, spec.height, spec.count, rng)
    assignment = assign_slots(layout, hero, subset)
    logger.debug(
        "collage %d: %dx%d, %d images, hero in slot %d",
        index, spec.width, spec.height, spec.count, hero_slot(layout),
    )

    img = compose(layout, assignment, canvas, workers=workers)
    data = encode_jpeg(img)
    logger.debug("collage %d: %d bytes in %.2fs", index, len(data), time.perf_counter() - t0)

    return CollageArtifact(
        name=collage_name(index),
        data=data,
        used_images=[hero, *subset],
        width=spec.width,
        height=spec.height,
        layout=list(layout),
        assignment=assignment,
        seed=seed,
    )

