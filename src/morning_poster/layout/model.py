from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass, field, fields, replace
from typing import Any, Callable, ClassVar, Iterator, Mapping, Union

from morning_poster.errors import UnknownElementError

logger = logging.getLogger(__name__)

POSTER_WIDTH = 720
POSTER_HEIGHT = 1280

DEFAULT_BACKGROUND = (
    "https://images.unsplash.com/photo-1470252649378-9c29740c9fa8?q=80&w=1470&auto=format&fit=crop"
)

_UNSET: Any = object()


@dataclass(frozen=True)
class Position:
    x: float
    y: float


@dataclass(frozen=True)
class TextStyle:
    kind: ClassVar[str] = "text"
    size_axis: ClassVar[str] = "font_size"

    font_size: float
    color: str
    font_family: str
    text_align: str = "left"  # left|center|right
    line_height: float = 1.1
    font_weight: str = "400"
    opacity: float = 1.0
    rotation: float = 0.0


@dataclass(frozen=True)
class ImageStyle:
    kind: ClassVar[str] = "image"
    size_axis: ClassVar[str] = "width"

    width: float
    rotation: float = 0.0


@dataclass(frozen=True)
class DecorationStyle:
    kind: ClassVar[str] = "decoration"
    size_axis: ClassVar[str] = "size"

    size: float
    color: str
    opacity: float = 1.0
    rotation: float = 0.0


Style = Union[TextStyle, ImageStyle, DecorationStyle]

STYLE_KINDS: dict[str, type] = {cls.kind: cls for cls in (TextStyle, ImageStyle, DecorationStyle)}

_TEXT_ALIGNS = ("left", "center", "right")


def _checked_value(name: str, kind: str, value: Any) -> Any:
    if kind == "float":
        if isinstance(value, bool) or not isinstance(value, (int, float, str)):
            raise ValueError(f"{name} must be a number, got {value!r}")
        try:
            number = float(value)
        except ValueError:
            raise ValueError(f"{name} must be a number, got {value!r}") from None
        if not math.isfinite(number):
            raise ValueError(f"{name} must be finite")
        return number
    if name == "font_weight" and isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    if not isinstance(value, str):
        raise ValueError(f"{name} must be a string, got {value!r}")
    if name == "text_align" and value not in _TEXT_ALIGNS:
        raise ValueError(f"text_align must be one of {', '.join(_TEXT_ALIGNS)}")
    return value


def _checked_fields(cls: type, values: Mapping[str, Any]) -> dict[str, Any]:
    # Field annotations are strings under postponed evaluation: "float" or "str".
    kinds = {f.name: f.type for f in fields(cls)}
    unknown = set(values) - set(kinds)
    if unknown:
        raise ValueError(f"{cls.kind} style has no field(s): {', '.join(sorted(unknown))}")
    return {name: _checked_value(name, kinds[name], value) for name, value in values.items()}


def merge_style(style: Style, updates: Mapping[str, Any]) -> Style:
    """
    Shallow-merge `updates` into a style, keeping its kind.

    Unknown fields and values of the wrong type raise ValueError. Numbers given
    as numeric strings are accepted.
    """
    return replace(style, **_checked_fields(type(style), updates))


def style_to_dict(style: Style) -> dict[str, Any]:
    data = asdict(style)
    data["kind"] = style.kind
    return data


def style_from_dict(data: Mapping[str, Any]) -> Style:
    kind = data.get("kind")
    cls = STYLE_KINDS.get(kind)  # type: ignore[arg-type]
    if cls is None:
        raise ValueError(f"unknown style kind: {kind!r}")
    allowed = {f.name for f in fields(cls)}
    return cls(**_checked_fields(cls, {k: v for k, v in data.items() if k in allowed}))


@dataclass
class Element:
    id: str
    content: str | None
    position: Position
    z_index: int
    style: Style

    @property
    def size_value(self) -> float:
        return float(getattr(self.style, self.style.size_axis))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "position": {"x": self.position.x, "y": self.position.y},
            "z_index": self.z_index,
            "style": style_to_dict(self.style),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Element":
        pos = data.get("position") or {}
        content = data.get("content")
        if content is not None and not isinstance(content, str):
            raise ValueError(f"content must be a string or null, got {content!r}")
        return cls(
            id=str(data["id"]),
            content=content,
            position=Position(float(pos["x"]), float(pos["y"])),
            z_index=int(data["z_index"]),
            style=style_from_dict(data["style"]),
        )


ChangeListener = Callable[["Element"], None]


@dataclass
class LayoutModel:
    """
    Ordered id -> Element mapping on the fixed 720x1280 logical canvas.

    All geometry is in logical units. Insertion order is the declaration order
    used to break z-index ties.
    """

    elements: dict[str, Element] = field(default_factory=dict)
    width: int = POSTER_WIDTH
    height: int = POSTER_HEIGHT
    _listeners: list[ChangeListener] = field(default_factory=list, repr=False, compare=False)

    def __iter__(self) -> Iterator[Element]:
        return iter(self.elements.values())

    def __len__(self) -> int:
        return len(self.elements)

    def __contains__(self, element_id: object) -> bool:
        return element_id in self.elements

    def add_listener(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    def get(self, element_id: str) -> Element:
        try:
            return self.elements[element_id]
        except KeyError:
            raise UnknownElementError(element_id) from None

    def update(
        self,
        element_id: str,
        content: str | None = _UNSET,
        position: Position | Mapping[str, float] | None = None,
        style: Mapping[str, Any] | None = None,
    ) -> Element:
        el = self.get(element_id)
        new_style = merge_style(el.style, style) if style else el.style
        if isinstance(position, Position):
            new_pos = position
        elif position:
            new_pos = Position(
                float(position.get("x", el.position.x)),
                float(position.get("y", el.position.y)),
            )
        else:
            new_pos = el.position

        el.style = new_style
        el.position = new_pos
        if content is not _UNSET:
            el.content = content

        for listener in self._listeners:
            listener(el)
        return el

    def paint_order(self) -> list[Element]:
        indexed = list(enumerate(self.elements.values()))
        indexed.sort(key=lambda pair: (pair[1].z_index, pair[0]))
        return [el for _, el in indexed]

    def to_dict(self) -> dict[str, Any]:
        return {el.id: el.to_dict() for el in self}

    def load_elements(self, data: Mapping[str, Any]) -> None:
        """Overlay saved elements onto the current ones; unknown or broken entries are skipped."""
        for element_id, raw in data.items():
            if element_id not in self.elements:
                logger.warning("Ignoring unknown saved element %s", element_id)
                continue
            try:
                loaded = Element.from_dict(raw)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Ignoring malformed saved element %s: %s", element_id, e)
                continue
            if loaded.style.kind != self.elements[element_id].style.kind:
                logger.warning("Ignoring saved element %s with mismatched style kind", element_id)
                continue
            loaded.id = element_id
            self.elements[element_id] = loaded


def _text(element_id: str, content: str, x: float, y: float, z: int, **style: Any) -> Element:
    return Element(id=element_id, content=content, position=Position(x, y), z_index=z, style=TextStyle(**style))


def default_layout() -> LayoutModel:
    """The stock morning poster: titles top-left, date right, quote bottom-left, sun bottom-right."""
    sans = '"Noto Sans SC", sans-serif'
    yahei = '"Microsoft YaHei", sans-serif'
    items = [
        _text("mainTextCN", "早安", 80, 180, 20, font_size=160, color="#ffffff", font_family=sans,
              text_align="left", line_height=1.1, font_weight="900"),
        _text("mainTextEN", "Good Morning", 60, 380, 21, font_size=60, color="#ffffff",
              font_family='"ZCOOL KuaiLe", cursive', text_align="left", line_height=1.1, font_weight="400"),
        _text("yiLearning", "易 学习", 480, 395, 22, font_size=40, color="#ffffff", font_family=yahei,
              text_align="center", line_height=1.0, font_weight="400", opacity=0.9),
        _text("proverb", "Life is bright and everything is lovely.\n生活明朗，万物可爱。\n—— 佚名",
              40, 1050, 20, font_size=32, color="#ffffff", font_family=yahei, text_align="left",
              line_height=1.5, font_weight="700"),
        Element(id="logo", content=None, position=Position(400, 40), z_index=30, style=ImageStyle(width=280)),
        _text("dateMonthYear", "", 500, 460, 15, font_size=50, color="#ffffff", font_family=sans,
              text_align="right", line_height=1.0, font_weight="700"),
        _text("dateDay", "", 580, 540, 16, font_size=200, color="#ffffff", font_family=sans,
              text_align="center", line_height=1.0, font_weight="900"),
        Element(id="sun", content="sun", position=Position(520, 1020), z_index=10,
                style=DecorationStyle(size=180, color="#dfff00", opacity=0.9)),
    ]
    return LayoutModel(elements={el.id: el for el in items})
