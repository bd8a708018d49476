"""Tests for the markup renderers."""

import logging
import os
import stat
import subprocess

import pytest

from utils.markup_errors import ConfigurationError, RendererExecutionError, RendererTimeoutError
from utils.markup_renderers import (
    GithubMarkupRenderer,
    PythonMarkdownRenderer,
    create_renderer,
)

posix_only = pytest.mark.skipif(os.name != "posix", reason="needs a POSIX shell")


def _fake_run(returncode=0, stdout=b"", stderr=b"", calls=None):
    def run(command, capture_output, timeout, check):
        if calls is not None:
            calls.append((command, timeout))
        return subprocess.CompletedProcess(command, returncode, stdout=stdout, stderr=stderr)

    return run


def _script(tmp_path, name, body):
    path = tmp_path / name
    path.write_text("#!/bin/sh\n" + body + "\n", encoding="utf-8")
    path.chmod(path.stat().st_mode | stat.S_IXUSR)
    return str(path)


def test_github_markup_output_is_returned(monkeypatch):
    calls = []
    monkeypatch.setattr(
        "utils.markup_renderers.subprocess.run", _fake_run(stdout="<h1>Hi ✓</h1>\n".encode("utf-8"), calls=calls)
    )
    html = GithubMarkupRenderer().render("/tmp/README.md")
    assert html == "<h1>Hi ✓</h1>\n"
    assert calls == [(["github-markup", "/tmp/README.md"], 3)]


def test_path_is_passed_as_a_single_argument(monkeypatch):
    calls = []
    monkeypatch.setattr("utils.markup_renderers.subprocess.run", _fake_run(calls=calls))
    GithubMarkupRenderer().render("/tmp/my notes; rm -rf.md")
    assert calls[0][0] == ["github-markup", "/tmp/my notes; rm -rf.md"]


def test_command_line_is_logged(monkeypatch, caplog):
    monkeypatch.setattr("utils.markup_renderers.subprocess.run", _fake_run())
    with caplog.at_level(logging.DEBUG, logger="utils.markup_renderers"):
        GithubMarkupRenderer().render("/tmp/a b.md")
    assert "Running command: github-markup '/tmp/a b.md'" in caplog.text


def test_non_zero_exit_raises_with_output(monkeypatch):
    monkeypatch.setattr(
        "utils.markup_renderers.subprocess.run", _fake_run(returncode=1, stdout=b"partial", stderr=b"boom")
    )
    with pytest.raises(RendererExecutionError) as excinfo:
        GithubMarkupRenderer().render("/tmp/README.md")
    assert excinfo.value.returncode == 1
    assert excinfo.value.stdout == "partial"
    assert excinfo.value.stderr == "boom"
    assert "boom" in str(excinfo.value)


@pytest.mark.parametrize(
    "banner",
    [b"usage: /opt/bin/github-markup FILE", b"usage: /usr/local/bin/github-markup FILE\n"],
)
def test_usage_banner_is_a_failure(monkeypatch, banner):
    monkeypatch.setattr("utils.markup_renderers.subprocess.run", _fake_run(stdout=banner))
    with pytest.raises(RendererExecutionError):
        GithubMarkupRenderer().render("/tmp/README.md")


def test_usage_text_inside_a_document_is_not_a_failure(monkeypatch):
    output = b"<p>usage: /opt/bin/github-markup FILE</p>\n"
    monkeypatch.setattr("utils.markup_renderers.subprocess.run", _fake_run(stdout=output))
    assert GithubMarkupRenderer().render("/tmp/README.md") == output.decode()


def test_timeout_raises(monkeypatch):
    def run(command, capture_output, timeout, check):
        raise subprocess.TimeoutExpired(command, timeout)

    monkeypatch.setattr("utils.markup_renderers.subprocess.run", run)
    with pytest.raises(RendererTimeoutError) as excinfo:
        GithubMarkupRenderer(timeout=1.5).render("/tmp/README.md")
    assert excinfo.value.timeout == 1.5


def test_missing_binary_raises(tmp_path):
    renderer = GithubMarkupRenderer(binary=str(tmp_path / "no-such-github-markup"))
    with pytest.raises(RendererExecutionError):
        renderer.render(str(tmp_path / "README.md"))


@posix_only
def test_slow_renderer_is_killed(tmp_path):
    binary = _script(tmp_path, "github-markup", "exec sleep 10")
    with pytest.raises(RendererTimeoutError):
        GithubMarkupRenderer(binary=binary, timeout=0.2).render(str(tmp_path / "README.md"))


@posix_only
def test_real_usage_banner_is_detected(tmp_path):
    binary = _script(tmp_path, "github-markup", 'echo "usage: $0 FILE"')
    with pytest.raises(RendererExecutionError):
        GithubMarkupRenderer(binary=binary).render(str(tmp_path / "README.md"))


def test_python_markdown_renders_markdown(tmp_path):
    path = tmp_path / "README.md"
    path.write_text("# Title\n\n| a | b |\n|---|---|\n| 1 | 2 |\n", encoding="utf-8")
    html = PythonMarkdownRenderer().render(str(path))
    assert '<h1 id="title">Title</h1>' in html
    assert "<table>" in html


def test_python_markdown_rejects_other_formats(tmp_path):
    path = tmp_path / "README.rst"
    path.write_text("Title\n=====\n", encoding="utf-8")
    with pytest.raises(RendererExecutionError):
        PythonMarkdownRenderer().render(str(path))


def test_create_renderer():
    renderer = create_renderer("github-markup", binary="/opt/bin/github-markup", timeout=5)
    assert isinstance(renderer, GithubMarkupRenderer)
    assert renderer.binary == "/opt/bin/github-markup"
    assert renderer.timeout == 5
    assert isinstance(create_renderer("python-markdown"), PythonMarkdownRenderer)
    with pytest.raises(ConfigurationError):
        create_renderer("pandoc")
