from __future__ import annotations


class PosterError(Exception):
    """Base class for editor errors."""


class UnknownElementError(PosterError, KeyError):
    def __init__(self, element_id: str) -> None:
        super().__init__(element_id)
        self.element_id = element_id

    def __str__(self) -> str:
        return f"unknown element '{self.element_id}'"


class GenerationError(PosterError):
    """A background or quote generation call failed."""

    def __init__(self, message: str, status_code: int | None = None, body: str | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body

    def __str__(self) -> str:
        msg = self.args[0] if self.args else "generation failed"
        if self.status_code is not None:
            msg = f"HTTP {self.status_code} {msg}"
        if self.body:
            msg = f"{msg}: {self.body}"
        return msg


class ExportError(PosterError):
    """Rasterizing the poster failed; no output was produced."""
