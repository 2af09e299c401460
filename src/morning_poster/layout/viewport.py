from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator

from morning_poster.config import settings
from morning_poster.layout.model import POSTER_HEIGHT, POSTER_WIDTH


@dataclass(frozen=True)
class DisplayTransform:
    """Uniform scale about the container center, as applied to the on-screen poster."""

    scale: float = 1.0
    offset_x: float = 0.0
    offset_y: float = 0.0

    @property
    def is_identity(self) -> bool:
        return self.scale == 1.0 and self.offset_x == 0.0 and self.offset_y == 0.0


IDENTITY = DisplayTransform()


def compute_scale(
    container_width: float,
    container_height: float,
    logical_size: tuple[int, int] = (POSTER_WIDTH, POSTER_HEIGHT),
    padding: float | None = None,
    min_scale: float | None = None,
) -> float:
    """
    Largest uniform scale that fits the logical canvas into the padded container,
    floored so a collapsed container never yields a zero or negative scale.
    """
    pad = settings.viewport_padding if padding is None else padding
    floor = settings.min_scale if min_scale is None else min_scale
    lw, lh = logical_size
    avail_w = container_width - pad
    avail_h = container_height - pad
    return max(floor, min(avail_w / lw, avail_h / lh))


class ViewportScaler:
    def __init__(
        self,
        logical_size: tuple[int, int] = (POSTER_WIDTH, POSTER_HEIGHT),
        padding: float | None = None,
    ) -> None:
        self.logical_size = logical_size
        self.padding = settings.viewport_padding if padding is None else padding
        self.container: tuple[float, float] | None = None
        self.scale = 1.0
        self._override: DisplayTransform | None = None

    def observe(self, container_width: float, container_height: float) -> float:
        """Record a new container size (from a resize observer) and recompute the scale."""
        self.container = (container_width, container_height)
        self.scale = compute_scale(container_width, container_height, self.logical_size, self.padding)
        return self.scale

    @contextmanager
    def neutralized(self) -> Iterator[None]:
        """Temporarily present an identity transform (e.g. while exporting)."""
        previous = self._override
        self._override = IDENTITY
        try:
            yield
        finally:
            self._override = previous

    def display_transform(self) -> DisplayTransform:
        if self._override is not None:
            return self._override
        if self.container is None:
            return DisplayTransform(scale=self.scale)
        cw, ch = self.container
        lw, lh = self.logical_size
        # transform-origin is the poster center, which sits at the container center.
        return DisplayTransform(
            scale=self.scale,
            offset_x=(cw - lw * self.scale) / 2,
            offset_y=(ch - lh * self.scale) / 2,
        )

    def screen_to_logical(self, dx: float, dy: float) -> tuple[float, float]:
        return dx / self.scale, dy / self.scale
