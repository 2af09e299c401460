from __future__ import annotations

import asyncio
import logging
import random
from datetime import date
from typing import Any

from morning_poster.assembly.inpaint import remove_watermark
from morning_poster.assembly.render import CompositeExporter
from morning_poster.config import settings
from morning_poster.errors import GenerationError
from morning_poster.layout.interaction import InteractionController
from morning_poster.layout.model import DEFAULT_BACKGROUND, Element, LayoutModel, default_layout
from morning_poster.layout.viewport import ViewportScaler
from morning_poster.providers.base import BackgroundProvider, QuoteProvider
from morning_poster.quotes import build_background_prompt, build_quote_messages, quote_text_from_completion
from morning_poster.storage import SnapshotStore

logger = logging.getLogger(__name__)

MONTH_NAMES = ["Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]


class EditorSession:
    """
    One editing session: the layout, its background, the viewport and the
    gesture controller. Every change is written through to the store.
    """

    def __init__(
        self,
        store: SnapshotStore | None = None,
        exporter: CompositeExporter | None = None,
        today: date | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.store = store or SnapshotStore()
        self.exporter = exporter or CompositeExporter()
        self.rng = rng or random.Random()
        self.model: LayoutModel = default_layout()
        self.background: str = DEFAULT_BACKGROUND
        self.viewport = ViewportScaler((self.model.width, self.model.height))
        self.controller = InteractionController(self.model, self.viewport)

        self._in_flight = {"background": 0, "quote": 0}
        self._issued = {"background": 0, "quote": 0}
        self._applied = {"background": 0, "quote": 0}

        saved = self.store.load()
        self.restored = saved is not None
        if saved is not None:
            self._restore(saved)
        else:
            self._stamp_date(today or date.today())

        self.model.add_listener(self._on_element_changed)
        self.persist()

    # --- State ---

    def _restore(self, saved: dict[str, Any]) -> None:
        bg = saved.get("background")
        if isinstance(bg, str) and bg:
            self.background = bg
        elements = saved.get("elements")
        if isinstance(elements, dict):
            self.model.load_elements(elements)

    def _stamp_date(self, today: date) -> None:
        self.model.update("dateDay", content=str(today.day))
        self.model.update("dateMonthYear", content=f"{MONTH_NAMES[today.month - 1]}. {today.year}")

    def snapshot(self) -> dict[str, Any]:
        return {"background": self.background, "elements": self.model.to_dict()}

    def persist(self) -> None:
        self.store.save(self.snapshot())

    def _on_element_changed(self, _el: Element) -> None:
        self.persist()

    @property
    def loading_background(self) -> bool:
        return self._in_flight["background"] > 0

    @property
    def loading_quote(self) -> bool:
        return self._in_flight["quote"] > 0

    def describe(self) -> dict[str, Any]:
        g = self.controller.gesture
        return {
            **self.snapshot(),
            "scale": self.viewport.scale,
            "interaction": self.controller.state.value,
            "gesture_target": g.target_id if g else None,
            "loading_background": self.loading_background,
            "loading_quote": self.loading_quote,
        }

    # --- Editing ---

    def set_background(self, ref: str) -> None:
        self.background = ref
        self.persist()

    def update_element(self, element_id: str, **changes: Any) -> Element:
        return self.model.update(element_id, **changes)

    def set_logo(self, data_url: str | None) -> Element:
        return self.model.update("logo", content=data_url)

    def observe_viewport(self, width: float, height: float) -> float:
        return self.viewport.observe(width, height)

    def pointer_down(self, element_id: str, x: float, y: float, handle: bool = False) -> bool:
        return self.controller.pointer_down(element_id, x, y, handle=handle)

    def pointer_move(self, x: float, y: float) -> Element | None:
        return self.controller.pointer_move(x, y)

    def pointer_up(self) -> None:
        self.controller.pointer_up()

    # --- Generation ---

    def _begin(self, kind: str) -> int:
        self._issued[kind] += 1
        self._in_flight[kind] += 1
        return self._issued[kind]

    def _accept(self, kind: str, request_id: int) -> bool:
        """Drop responses older than one already applied, unless fencing is off."""
        if settings.fence_generations and request_id < self._applied[kind]:
            logger.warning("Dropping stale %s response #%d (already applied #%d)", kind, request_id, self._applied[kind])
            return False
        self._applied[kind] = max(self._applied[kind], request_id)
        return True

    async def generate_background(self, provider: BackgroundProvider) -> bool:
        """Fetch a new background, scrub the watermark and apply it. Returns False if it went stale."""
        request_id = self._begin("background")
        try:
            prompt = build_background_prompt(self.rng)
            size = f"{self.model.width}x{self.model.height}"
            result = await provider.generate_background(prompt, size=size, watermark_enabled=False)
            if not result.data_url:
                raise GenerationError("No image data", status_code=502)
            cleaned = result.data_url
            if settings.watermark_removal:
                cleaned = await asyncio.to_thread(remove_watermark, result.data_url)
            if not self._accept("background", request_id):
                return False
            self.set_background(cleaned or result.data_url)
            return True
        except GenerationError as e:
            logger.error("Background generation failed: %s", e)
            raise
        finally:
            self._in_flight["background"] -= 1

    async def generate_quote(self, provider: QuoteProvider) -> bool:
        request_id = self._begin("quote")
        try:
            data = await provider.complete(build_quote_messages(self.rng), temperature=1.0)
            text = quote_text_from_completion(data)
            if not self._accept("quote", request_id):
                return False
            self.model.update("proverb", content=text)
            return True
        except GenerationError as e:
            logger.error("Quote generation failed: %s", e)
            raise
        finally:
            self._in_flight["quote"] -= 1

    # --- Export ---

    async def export_png(self) -> bytes:
        return await self.exporter.export_png(self.model, self.background, self.viewport)

    async def preview_png(self) -> bytes:
        return await self.exporter.preview_png(self.model, self.background, self.viewport)
