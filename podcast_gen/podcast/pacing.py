"""Image pacing: how many slideshow slots, and how long each image stays on screen."""

import math
from typing import List, Sequence, Tuple, TypeVar

from loguru import logger

from podcast_gen.core.configs.assembly import PacingConfig
from podcast_gen.podcast_material import PacingMode

T = TypeVar("T")


def _even_split(total_duration: float, count: int) -> List[float]:
    """Split ``total_duration`` into ``count`` equal parts whose sum is exactly the total."""
    share = total_duration / count
    durations = [share] * count
    durations[-1] = total_duration - share * (count - 1)
    return durations


def plan_image_schedule(
    images: Sequence[T],
    total_duration: float,
    pacing_mode: PacingMode | str = PacingMode.AUTOMATIC,
    overrides: Sequence[float] | None = None,
    config: PacingConfig | None = None,
) -> List[Tuple[T, float]]:
    """Decide which images are shown and for how long.

    Automatic pacing starts from ``total / count`` seconds per image. Above the maximum
    comfortable duration the image sequence is repeated; below the minimum it is
    subsampled at evenly spaced indices. Manual pacing uses ``overrides`` verbatim when
    there is exactly one per image, and falls back to an even split otherwise.

    Args:
        images: The image pool, in display order
        total_duration: Runtime to cover, in seconds
        pacing_mode: ``automatic`` or ``manual``
        overrides: Manual per-image durations
        config: Comfort band

    Returns:
        List[Tuple[T, float]]: ``(image, duration)`` slots in display order. Durations
        of automatic and fallback schedules sum to ``total_duration``.

    Raises:
        ValueError: If there are no images or the duration is not positive

    Example:
        >>> plan_image_schedule(["a", "b", "c"], 60.0)
        [('a', 10.0), ('b', 10.0), ('c', 10.0), ('a', 10.0), ('b', 10.0), ('c', 10.0)]
    """
    if not images:
        raise ValueError("Cannot plan a slideshow without images")
    if total_duration <= 0:
        raise ValueError(f"Total duration must be positive, got {total_duration}")
    config = config or PacingConfig()
    images = list(images)

    if PacingMode(pacing_mode) == PacingMode.MANUAL:
        if overrides is not None and len(overrides) == len(images) and all(d > 0 for d in overrides):
            return list(zip(images, [float(d) for d in overrides]))
        logger.warning(
            f"Manual pacing needs {len(images)} positive durations, got "
            f"{'none' if overrides is None else len(overrides)}; splitting evenly"
        )
        return list(zip(images, _even_split(total_duration, len(images))))

    if len(images) == 1:
        return [(images[0], total_duration)]

    sequence = images
    per_image = total_duration / len(sequence)
    if per_image > config.max_image_duration:
        loops = math.ceil(per_image / config.max_image_duration)
        sequence = images * loops
        per_image = total_duration / len(sequence)
        logger.debug(f"Repeating {len(images)} image(s) {loops} times, {per_image:.2f}s each")

    if per_image < config.min_image_duration:
        target = max(1, math.floor(total_duration / config.min_image_duration))
        step = len(sequence) / target
        sequence = [sequence[math.floor(i * step)] for i in range(target)]
        logger.debug(f"Subsampling to {target} image(s), {total_duration / target:.2f}s each")

    return list(zip(sequence, _even_split(total_duration, len(sequence))))
