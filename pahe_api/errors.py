# -*- coding: utf-8 -*-
from __future__ import annotations

from typing import Any, Dict, Optional

OUTPUT_EXCERPT_CHARS = 2000


class PaheError(Exception):
    """Base class for every failure surfaced by the resolver pipeline."""

    category = "internal"
    status_code = 500

    def __init__(
        self,
        message: str,
        *,
        url: Optional[str] = None,
        suggestion: Optional[str] = None,
        output: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.url = url
        self.suggestion = suggestion
        self.output = output

    def with_context(self, context: str) -> "PaheError":
        """Same category, message prefixed with ``context``."""
        return type(self)(
            f"{context}: {self.message}",
            url=self.url,
            suggestion=self.suggestion,
            output=self.output,
        )

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.message, "category": self.category}
        if self.url:
            body["url"] = self.url
        if self.suggestion:
            body["suggestion"] = self.suggestion
        return body


class UpstreamError(PaheError):
    category = "upstream"
    status_code = 502


class ParseError(PaheError):
    category = "parse"
    status_code = 502


class NotFoundError(PaheError):
    category = "not_found"
    status_code = 404


class ResolutionError(PaheError):
    """Sandboxed run finished without yielding a manifest URL.

    The captured output is kept (truncated) on the exception and embedded in
    the message, so a failure can be diagnosed from the error alone.
    """

    category = "resolution"
    status_code = 502

    def __init__(self, message: str, *, output: Optional[str] = None, **kwargs):
        if output is not None:
            output = output[:OUTPUT_EXCERPT_CHARS]
        super().__init__(message, output=output, **kwargs)

    @classmethod
    def from_output(cls, reason: str, output: str) -> "ResolutionError":
        excerpt = (output or "")[:OUTPUT_EXCERPT_CHARS]
        return cls(
            f"{reason}. Sandbox output (first {OUTPUT_EXCERPT_CHARS} chars):\n{excerpt}",
            output=excerpt,
        )


class AccessDeniedError(PaheError):
    category = "access_denied"
    status_code = 403

    DEFAULT_SUGGESTION = (
        "The video CDN rejected the relayed request (its protection layer "
        "blocks server-side clients). Retry later with a fresh identity or "
        "pick another source."
    )

    def __init__(self, message: str, *, url: Optional[str] = None, suggestion: Optional[str] = None, **kwargs):
        super().__init__(message, url=url, suggestion=suggestion or self.DEFAULT_SUGGESTION, **kwargs)
