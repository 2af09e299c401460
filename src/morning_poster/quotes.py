from __future__ import annotations

import json
import random
import re
from dataclasses import dataclass
from typing import Any

BG_THEMES = [
    "lush green forest",
    "clear blue sky with soft clouds",
    "radiant sunrise over ocean",
    "misty mountains golden light",
    "fresh morning meadow dew",
    "calm lake reflection",
    "modern city skyline morning",
    "peaceful zen garden",
    "tropical beach morning",
    "snowy pine forest sunrise",
    "blooming flower field morning",
]

VISUAL_STYLES = [
    "photorealistic",
    "cinematic lighting",
    "soft dreamy focus",
    "vibrant colors",
    "minimalist composition",
    "macro photography details",
]

QUOTE_TOPICS = [
    "Perseverance and Grit",
    "Innovation and Future",
    "Inner Peace and Mindfulness",
    "Learning and Growth",
    "Kindness and Empathy",
    "Leadership and Vision",
    "Nature and Harmony",
]

SYSTEM_PROMPT = "你是一个有用的AI助手。"

# Models like to attribute quotes to "Chinese proverb"; such sources are dropped.
_HALLUCINATED_SOURCE = ("proverb", "chinese")


@dataclass(frozen=True)
class Quote:
    english: str
    chinese: str
    source: str = ""

    def to_text(self) -> str:
        text = f"{self.english}\n{self.chinese}"
        if self.source:
            text += f"\n—— {self.source}"
        return text


def build_background_prompt(rng: random.Random | None = None) -> str:
    rng = rng or random.Random()
    theme = rng.choice(BG_THEMES)
    style = rng.choice(VISUAL_STYLES)
    seed = rng.randrange(1_000_000)
    return (
        f"垂直9:16海报背景，主题：{theme}，风格：{style}。"
        f"宁静清晨氛围，审美高级，极简，大量留白用于排版，不含任何文字。随机种子：{seed}"
    )


def build_quote_messages(rng: random.Random | None = None) -> list[dict[str, str]]:
    rng = rng or random.Random()
    topic = rng.choice(QUOTE_TOPICS)
    seed = rng.randrange(1_000_000)
    prompt = (
        f"主题: {topic}。种子: {seed}。"
        '请生成一条独特且鼓舞人心的英中双语金句，并只返回 JSON：{"english":"...","chinese":"...","source":"..."}'
    )
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": prompt},
    ]


def extract_message_text(data: dict[str, Any]) -> str:
    """Text of the first choice of a chat completion (string, list-of-parts, or streamed delta)."""
    choices = data.get("choices") or []
    first = choices[0] if choices and isinstance(choices[0], dict) else {}
    content = (first.get("message") or {}).get("content")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "".join(p if isinstance(p, str) else str((p or {}).get("text") or "") for p in content)
    return str((first.get("delta") or {}).get("content") or "")


def _extract_json_object(raw: str) -> Any:
    s = raw.strip()
    m = re.search(r"```(?:json)?\s*(\{.*?\})\s*```", s, re.DOTALL | re.IGNORECASE)
    if m:
        s = m.group(1)
    else:
        start, end = s.find("{"), s.rfind("}")
        if start != -1 and end > start:
            s = s[start : end + 1]
    return json.loads(s)


def parse_quote(text: str) -> Quote:
    """
    Parse `{"english", "chinese", "source"}` out of model output.

    Falls back to line 1 -> english, line 2 -> chinese with no source when the
    output holds no JSON object.
    """
    try:
        data = _extract_json_object(text or "")
        if not isinstance(data, dict):
            raise ValueError("quote JSON is not an object")
        english = str(data.get("english") or "")
        chinese = str(data.get("chinese") or "")
        source = data.get("source") or ""
    except ValueError:
        lines = [ln for ln in (text or "").split("\n") if ln]
        english = lines[0] if lines else ""
        chinese = lines[1] if len(lines) > 1 else ""
        source = ""

    if not isinstance(source, str):
        source = ""
    if any(marker in source.lower() for marker in _HALLUCINATED_SOURCE):
        source = ""
    return Quote(english=english, chinese=chinese, source=source.strip())


def quote_text_from_completion(data: dict[str, Any]) -> str:
    return parse_quote(extract_message_text(data)).to_text()
