"""Renderers turning a markup file into (unsanitized) HTML."""

from __future__ import annotations

import logging
import os
import re
import shlex
import subprocess
from typing import Protocol, Sequence

import markdown

from utils.markup_errors import ConfigurationError, RendererExecutionError, RendererTimeoutError

logger = logging.getLogger(__name__)

# Maximum time in seconds github-markup may take to convert a single document.
GITHUB_MARKUP_PROCESS_TIMEOUT = 3

MARKDOWN_EXTENSIONS = ("md", "markdown", "mdown", "mkd")


class MarkupRenderer(Protocol):
    name: str

    def render(self, path: str) -> str:
        """Return the HTML produced for the markup file at ``path``."""
        ...


class GithubMarkupRenderer:
    """Run the ``github-markup`` command line tool on a file.

    The tool picks the markup dialect from the file extension, exactly as
    GitHub does when rendering a README. Its output is not safe to embed.
    """

    name = "github-markup"

    def __init__(self, binary: str = "github-markup", timeout: float = GITHUB_MARKUP_PROCESS_TIMEOUT) -> None:
        self.binary = binary
        self.timeout = timeout
        # github-markup exits with 0 and prints this banner when it cannot read the file.
        self._usage_banner = re.compile(r"usage: .+/" + re.escape(os.path.basename(binary)) + r" FILE\n?")

    def render(self, path: str) -> str:
        command = [self.binary, path]
        logger.debug("Running command: %s", shlex.join(command))
        try:
            result = subprocess.run(command, capture_output=True, timeout=self.timeout, check=False)
        except subprocess.TimeoutExpired as exc:
            raise RendererTimeoutError(command, self.timeout) from exc
        except OSError as exc:
            raise RendererExecutionError(f"Unable to run {self.binary}: {exc}", command) from exc

        stdout = _decode(result.stdout)
        stderr = _decode(result.stderr)
        if result.returncode != 0:
            raise RendererExecutionError(
                f"{self.binary} failed", command, returncode=result.returncode, stdout=stdout, stderr=stderr
            )
        if self._usage_banner.fullmatch(stdout):
            raise RendererExecutionError(
                f"{self.binary} was unable to read {path}",
                command,
                returncode=result.returncode,
                stdout=stdout,
                stderr=stderr,
            )
        return stdout


class PythonMarkdownRenderer:
    """Render Markdown files in-process with Python-Markdown."""

    name = "python-markdown"

    def __init__(self, extensions: Sequence[str] = ("fenced_code", "tables", "sane_lists", "toc", "md_in_html")) -> None:
        self.extensions = list(extensions)

    def render(self, path: str) -> str:
        extension = os.path.splitext(path)[1].lstrip(".").lower()
        if extension not in MARKDOWN_EXTENSIONS:
            raise RendererExecutionError(f"Unsupported markup format for {self.name}: {extension or '(none)'}")
        try:
            with open(path, encoding="utf-8", errors="replace") as fh:
                text = fh.read()
        except OSError as exc:
            raise RendererExecutionError(f"Unable to read {path}: {exc}") from exc
        return markdown.markdown(text, extensions=self.extensions)


def create_renderer(
    name: str, binary: str = "github-markup", timeout: float = GITHUB_MARKUP_PROCESS_TIMEOUT
) -> MarkupRenderer:
    if name == GithubMarkupRenderer.name:
        return GithubMarkupRenderer(binary=binary, timeout=timeout)
    if name == PythonMarkdownRenderer.name:
        return PythonMarkdownRenderer()
    raise ConfigurationError(f"Unknown markup renderer: {name}")


def _decode(data: bytes) -> str:
    return (data or b"").decode("utf-8", errors="replace")
