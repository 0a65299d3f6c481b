from __future__ import annotations

import logging
import random
from typing import Callable, List, Sequence

import hero_collage
from hero_collage import CollageArtifact, CollageError, SourceImage

BATCH_SIZE = 20

logger = logging.getLogger(__name__)


class BatchFailure(CollageError):
    def __init__(self, index: int, total: int, cause: Exception) -> None:
        super().__init__(f"collage {index}/{total} failed: {cause}")
        self.index = index
        self.total = total


def generate_batch(
    hero: SourceImage,
    gallery: Sequence[SourceImage],
    aspect_ratio: str,
    quality: str,
    *,
    count: int = BATCH_SIZE,
    seed: int | None = None,
    on_progress: Callable[[float], None] | None = None,
    workers: int = 0,
) -> List[CollageArtifact]:
    """Generate ``count`` collages one after another.

    ``on_progress`` receives the completed percentage after each collage.
    The first failing collage aborts the batch with ``BatchFailure``; a caller
    that wants to stop early can raise from ``on_progress``.
    """
    if count < 1:
        raise ValueError("count must be >= 1")
    hero_collage.validate_inputs(hero, gallery)
    canvas = hero_collage.resolve_canvas(aspect_ratio, quality)
    logger.info(
        "generating %d collages at %dx%d from %d gallery images",
        count, canvas.width, canvas.height, len(gallery),
    )

    rng = random.Random(seed)
    results: List[CollageArtifact] = []
    for i in range(1, count + 1):
        instance_seed = rng.randrange(2**32)
        try:
            art = hero_collage.assemble(
                hero,
                gallery,
                aspect_ratio,
                quality,
                instance_seed,
                index=i,
                workers=workers,
            )
        except Exception as exc:
            logger.error("collage %d/%d failed: %s", i, count, exc)
            raise BatchFailure(i, count, exc) from exc

        results.append(art)
        if on_progress is not None:
            on_progress(len(results) * 100 / count)

    logger.info("generated %d collages", len(results))
    return results
