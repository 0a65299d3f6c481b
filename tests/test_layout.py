from __future__ import annotations

import random

import pytest

from conftest import make_source
from hero_collage import Rect, assign_slots, hero_slot, partition


def overlaps(a: Rect, b: Rect) -> bool:
    return not (
        a.x + a.w <= b.x
        or b.x + b.w <= a.x
        or a.y + a.h <= b.y
        or b.y + b.h <= a.y
    )


def check_tiling(rects: list[Rect], width: int, height: int) -> None:
    assert sum(r.area for r in rects) == width * height
    for r in rects:
        assert r.w > 0 and r.h > 0
        assert 0 <= r.x and r.x + r.w <= width
        assert 0 <= r.y and r.y + r.h <= height
    for i, a in enumerate(rects):
        for b in rects[i + 1 :]:
            assert not overlaps(a, b), (a, b)


@pytest.mark.parametrize("seed", range(25))
@pytest.mark.parametrize("width,height", [(2048, 2048), (2048, 1536), (2160, 3840), (101, 37)])
def test_partition_tiles_canvas(seed, width, height):
    rng = random.Random(seed)
    count = rng.randint(1, 12)
    rects = partition(width, height, count, rng)
    assert len(rects) == count
    check_tiling(rects, width, height)


def test_partition_single_rect_is_full_canvas():
    assert partition(640, 480, 1) == [Rect(0, 0, 640, 480)]


def test_partition_single_rect_draws_nothing():
    rng = random.Random(3)
    state = rng.getstate()
    partition(10, 10, 1, rng)
    assert rng.getstate() == state


def test_partition_tiny_canvas_every_pixel_once():
    rects = partition(3, 2, 6, random.Random(1))
    covered = sorted((x, y) for r in rects for x in range(r.x, r.x + r.w) for y in range(r.y, r.y + r.h))
    assert covered == sorted((x, y) for x in range(3) for y in range(2))


def test_partition_thin_strip_never_yields_empty_rect():
    rects = partition(1, 50, 7, random.Random(5))
    check_tiling(rects, 1, 50)
    assert all(r.w == 1 for r in rects)


def test_partition_same_seed_same_layout():
    a = partition(2048, 1152, 6, random.Random(42))
    b = partition(2048, 1152, 6, random.Random(42))
    assert a == b


def test_partition_wide_canvas_splits_width_first():
    rects = partition(2000, 500, 2, random.Random(0))
    assert all(r.h == 500 for r in rects)
    assert rects[0].x == 0 and rects[1].x == rects[0].w
    assert 600 <= rects[0].w <= 1400


def test_partition_tall_canvas_splits_height_first():
    rects = partition(500, 2000, 2, random.Random(0))
    assert all(r.w == 500 for r in rects)
    assert 600 <= rects[0].h <= 1400


@pytest.mark.parametrize("args", [(0, 10, 1), (10, -1, 1), (10, 10, 0), (2, 2, 5)])
def test_partition_rejects_bad_arguments(args):
    with pytest.raises(ValueError):
        partition(*args)


def test_hero_slot_picks_largest():
    layout = [Rect(0, 0, 10, 10), Rect(10, 0, 30, 10), Rect(0, 10, 40, 5)]
    assert hero_slot(layout) == 1


def test_hero_slot_tie_takes_lowest_index():
    layout = [Rect(0, 0, 5, 10), Rect(5, 0, 10, 10), Rect(15, 0, 10, 10)]
    assert hero_slot(layout) == 1


def test_assign_slots_order():
    hero = make_source("hero.jpg", (255, 0, 0))
    b = make_source("b.jpg", (0, 255, 0))
    c = make_source("c.jpg", (0, 0, 255))
    layout = [Rect(0, 0, 10, 10), Rect(10, 0, 30, 10), Rect(40, 0, 5, 10)]

    assert assign_slots(layout, hero, [b, c]) == [b, hero, c]


def test_assign_slots_single_rect():
    hero = make_source("hero.jpg", (255, 0, 0))
    assert assign_slots([Rect(0, 0, 8, 8)], hero, []) == [hero]


def test_assign_slots_size_mismatch():
    hero = make_source("hero.jpg", (255, 0, 0))
    with pytest.raises(ValueError):
        assign_slots([Rect(0, 0, 4, 4), Rect(4, 0, 4, 4)], hero, [])


@pytest.mark.parametrize("seed", range(10))
def test_assign_slots_hero_in_max_area_of_random_layout(seed):
    rng = random.Random(seed)
    layout = partition(1200, 628, 5, rng)
    hero = make_source("hero.jpg", (255, 0, 0))
    others = [make_source(f"{i}.jpg", (0, 0, i)) for i in range(4)]

    assignment = assign_slots(layout, hero, others)
    idx = assignment.index(hero)
    assert layout[idx].area == max(r.area for r in layout)
    assert [s for s in assignment if s is not hero] == others
