import os

BASE_DIR = os.path.dirname(os.path.abspath(__file__))


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "change-me")

    # Scratch files and the sanitizer definition cache live here.
    MARKUP_CACHE_DIR = os.environ.get("MARKUP_CACHE_DIR", os.path.join(BASE_DIR, "var", "cache"))
    # Renderer selection: github-markup or python-markdown
    MARKUP_RENDERER = os.environ.get("MARKUP_RENDERER", "github-markup").lower()
    GITHUB_MARKUP_BIN = os.environ.get("GITHUB_MARKUP_BIN", "github-markup")
    GITHUB_MARKUP_TIMEOUT = float(os.environ.get("GITHUB_MARKUP_TIMEOUT", 3))
    MARKUP_MAX_CONTENT_BYTES = int(os.environ.get("MARKUP_MAX_CONTENT_BYTES", 512 * 1024))

    LOG_DIR = os.environ.get("LOG_DIR", os.path.join(BASE_DIR, "logs"))
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
