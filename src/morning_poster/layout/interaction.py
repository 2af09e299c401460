from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import cast

from morning_poster.config import settings
from morning_poster.layout.model import Element, LayoutModel, Position
from morning_poster.layout.viewport import ViewportScaler

logger = logging.getLogger(__name__)


class GestureKind(Enum):
    MOVE = "move"
    RESIZE = "resize"


class InteractionState(Enum):
    IDLE = "idle"
    DRAGGING = "dragging"
    RESIZING = "resizing"


@dataclass(frozen=True)
class Gesture:
    kind: GestureKind
    target_id: str
    origin_pointer: tuple[float, float]
    # Position for MOVE, the size scalar for RESIZE.
    origin_value: Position | float
    axis: str | None = None


class InteractionController:
    """
    Turns screen-space pointer events into logical-space layout mutations.

    At most one gesture exists at a time; it owns the pointer until release.
    Every move writes straight through to the model.
    """

    def __init__(
        self,
        model: LayoutModel,
        viewport: ViewportScaler,
        drag_policy: str | None = None,
        min_value: float | None = None,
    ) -> None:
        self.model = model
        self.viewport = viewport
        self.drag_policy = drag_policy or settings.drag_policy
        self.min_value = settings.min_resize_value if min_value is None else min_value
        self.gesture: Gesture | None = None

    @property
    def state(self) -> InteractionState:
        if self.gesture is None:
            return InteractionState.IDLE
        if self.gesture.kind is GestureKind.MOVE:
            return InteractionState.DRAGGING
        return InteractionState.RESIZING

    def pointer_down(self, element_id: str, x: float, y: float, handle: bool = False) -> bool:
        """Start a drag (body) or resize (handle) gesture. Returns False when ignored."""
        el = self.model.get(element_id)
        if self.gesture is not None:
            logger.debug("Ignoring pointer-down on %s; %s owns the pointer", element_id, self.gesture.target_id)
            return False
        if el.style.kind == "image" and el.content is None:
            # An empty logo slot is not rendered, so there is nothing to hit.
            return False

        if handle:
            self.gesture = Gesture(
                kind=GestureKind.RESIZE,
                target_id=element_id,
                origin_pointer=(x, y),
                origin_value=el.size_value,
                axis=el.style.size_axis,
            )
        else:
            self.gesture = Gesture(
                kind=GestureKind.MOVE,
                target_id=element_id,
                origin_pointer=(x, y),
                origin_value=el.position,
            )
        return True

    def pointer_move(self, x: float, y: float) -> Element | None:
        g = self.gesture
        if g is None:
            return None
        dx, dy = self.viewport.screen_to_logical(x - g.origin_pointer[0], y - g.origin_pointer[1])

        if g.kind is GestureKind.RESIZE:
            # The single corner handle collapses the 2D drag onto the horizontal axis.
            new_value = max(self.min_value, cast(float, g.origin_value) + dx)
            return self.model.update(g.target_id, style={g.axis: new_value})

        origin = cast(Position, g.origin_value)
        new_x, new_y = origin.x + dx, origin.y + dy
        if self.drag_policy == "clamped":
            new_x = min(max(new_x, 0.0), float(self.model.width))
            new_y = min(max(new_y, 0.0), float(self.model.height))
        return self.model.update(g.target_id, position=Position(new_x, new_y))

    def pointer_up(self) -> None:
        self.gesture = None
