from __future__ import annotations

import io

import pytest
from PIL import Image

from hero_collage import SourceImage


def make_source(name: str, color: tuple[int, int, int], size: tuple[int, int] = (64, 48), fmt: str = "JPEG") -> SourceImage:
    buf = io.BytesIO()
    Image.new("RGB", size, color=color).save(buf, format=fmt)
    return SourceImage(name=name, data=buf.getvalue())


@pytest.fixture
def hero() -> SourceImage:
    return make_source("hero.jpg", (220, 20, 20), size=(80, 60))


@pytest.fixture
def gallery() -> list[SourceImage]:
    return [
        make_source("b.jpg", (20, 20, 220), size=(40, 90)),
        make_source("c.png", (20, 200, 20), size=(90, 40), fmt="PNG"),
    ]


@pytest.fixture
def big_gallery() -> list[SourceImage]:
    colors = [(20, 20, 220), (20, 200, 20), (230, 200, 20), (120, 20, 160), (20, 180, 180), (90, 90, 90), (0, 0, 0)]
    return [make_source(f"g{i}.jpg", c, size=(30 + 7 * i, 50)) for i, c in enumerate(colors)]
