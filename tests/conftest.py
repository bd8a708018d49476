import logging
import os

import pytest

from utils.html_sanitizer import HtmlSanitizer
from utils.markup_converter import MarkupToHtmlConverter


class FakeRenderer:
    """Renderer double returning canned HTML without spawning a process."""

    name = "fake"

    def __init__(self, output="<p>rendered</p>", error=None):
        self.output = output
        self.error = error
        self.calls = []
        self.existed = []

    def render(self, path):
        self.calls.append(path)
        self.existed.append(os.path.exists(path))
        if self.error is not None:
            raise self.error
        return self.output


@pytest.fixture
def cache_dir(tmp_path):
    path = tmp_path / "cache"
    path.mkdir()
    return str(path)


@pytest.fixture
def sanitizer(cache_dir):
    return HtmlSanitizer(cache_dir)


@pytest.fixture
def renderer():
    return FakeRenderer()


@pytest.fixture
def converter(cache_dir, renderer, sanitizer):
    return MarkupToHtmlConverter(cache_dir, logging.getLogger("tests.markup"), renderer=renderer, sanitizer=sanitizer)


@pytest.fixture
def scratch_files(cache_dir):
    def _list():
        return [name for name in os.listdir(cache_dir) if name.startswith("lc-markup-conv-")]

    return _list
