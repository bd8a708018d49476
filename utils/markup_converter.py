"""Convert text written in a markup language to safe HTML.

Every markup format github-markup understands (Markdown, reStructuredText,
AsciiDoc, ...) is supported. The pipeline applied to every input is:

- convert the input to HTML with a ``MarkupRenderer`` (github-markup by default),
- sanitize that HTML with ``HtmlSanitizer`` so it can be embedded in a page.

Plain text files (no extension, or ``.txt``) are never handed to the renderer;
they are escaped and wrapped in ``<pre>``.

The conversion is tuned for safety and breadth of supported formats, not speed.
"""

from __future__ import annotations

import html
import logging
import os
import tempfile
from contextlib import contextmanager, suppress
from typing import Iterator, Optional

from utils.html_sanitizer import HtmlSanitizer, check_cache_dir
from utils.markup_errors import MarkupConversionError, ScratchFileError
from utils.markup_renderers import GithubMarkupRenderer, MarkupRenderer

PLAINTEXT_EXTENSIONS = ("", "txt")
SCRATCH_FILE_PREFIX = "lc-markup-conv-"


def is_plaintext(path: str) -> bool:
    extension = os.path.splitext(path)[1].lstrip(".").lower()
    return extension in PLAINTEXT_EXTENSIONS


class MarkupToHtmlConverter:
    def __init__(
        self,
        cache_dir: str,
        logger: logging.Logger,
        renderer: Optional[MarkupRenderer] = None,
        sanitizer: Optional[HtmlSanitizer] = None,
    ) -> None:
        """``cache_dir`` must exist; it holds scratch files and the sanitizer cache."""
        check_cache_dir(cache_dir)
        self.cache_dir = cache_dir
        self.logger = logger
        self.renderer = renderer or GithubMarkupRenderer()
        self.sanitizer = sanitizer or HtmlSanitizer(cache_dir)

    def convert(self, markup: str, markup_format: Optional[str] = None) -> str:
        """Convert a string of markup to sanitized HTML.

        Without ``markup_format`` (a file extension such as ``"md"`` or
        ``"rst"``) the content is treated as plain text.
        """
        unsafe_html = self.markup_to_unsafe_html(markup, markup_format)
        return self.sanitizer.sanitize(unsafe_html)

    def convert_file(self, path: str) -> str:
        self.logger.debug("Converting %s to HTML ...", path)
        unsafe_html = self.markup_file_to_unsafe_html(path)
        safe_html = self.sanitizer.sanitize(unsafe_html)
        self.logger.debug("Conversion done.")
        return safe_html

    def markup_to_unsafe_html(self, markup: str, markup_format: Optional[str] = None) -> str:
        suffix = ""
        if markup_format:
            extension = markup_format.lstrip(".")
            if not extension.isalnum():
                raise ValueError(f"Invalid markup format: {markup_format!r}")
            suffix = "." + extension
        with self.scratch_file(markup, suffix=suffix) as path:
            return self.markup_file_to_unsafe_html(path)

    def markup_file_to_unsafe_html(self, path: str) -> str:
        if is_plaintext(path):
            return self._plaintext_to_unsafe_html(path)
        return self.renderer.render(path)

    @contextmanager
    def scratch_file(self, content: str, suffix: str = "") -> Iterator[str]:
        """Yield the path of a new file holding ``content``; it is removed on exit."""
        try:
            fd, path = tempfile.mkstemp(prefix=SCRATCH_FILE_PREFIX, suffix=suffix, dir=self.cache_dir)
        except OSError as exc:
            raise ScratchFileError(f"Unable to create temporary file in {self.cache_dir}.") from exc
        try:
            try:
                with os.fdopen(fd, "w", encoding="utf-8", newline="") as fh:
                    fh.write(content)
            except (OSError, UnicodeError) as exc:
                raise ScratchFileError(f"Unable to write to file {path}") from exc
            yield path
        finally:
            with suppress(FileNotFoundError):
                os.unlink(path)

    def _plaintext_to_unsafe_html(self, path: str) -> str:
        try:
            with open(path, encoding="utf-8", errors="replace") as fh:
                text = fh.read()
        except OSError as exc:
            raise MarkupConversionError(f"Unable to read {path}") from exc
        return "<pre>" + html.escape(text, quote=True) + "</pre>"
