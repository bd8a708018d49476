"""Allow-list HTML sanitization for rendered project documentation.

The policy is a fixed, immutable structure. It is compiled once into a
``CompiledDefinition`` (the element/attribute tables bleach works from) and
that definition is cached on disk, keyed by the digest of the policy, so
that every worker process of the site shares the same compiled tables.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import re
import tempfile
from contextlib import suppress
from dataclasses import asdict, dataclass, field
from functools import partial
from typing import Any, Dict, FrozenSet, Iterator, Optional, Tuple
from urllib.parse import urlsplit

import bleach
from bleach.css_sanitizer import CSSSanitizer
from bleach.html5lib_shim import Filter

from utils.markup_errors import ConfigurationError

logger = logging.getLogger(__name__)

# Bumped whenever compile_definition() changes, invalidating cached definitions.
DEFINITION_REVISION = 1

# Elements the sanitizer knows without registration (HTML 4.01 transitional).
BASE_ELEMENTS = frozenset(
    {
        "a", "abbr", "acronym", "address", "b", "bdo", "big", "blockquote", "br",
        "caption", "center", "cite", "code", "col", "colgroup", "dd", "del", "dfn",
        "dir", "div", "dl", "dt", "em", "font", "h1", "h2", "h3", "h4", "h5", "h6",
        "hr", "i", "img", "ins", "kbd", "li", "menu", "ol", "p", "pre", "q", "s",
        "samp", "small", "span", "strike", "strong", "sub", "sup", "table", "tbody",
        "td", "tfoot", "th", "thead", "tr", "tt", "u", "ul", "var",
    }
)

ATTRIBUTE_COLLECTIONS = {
    "Common": frozenset({"class", "id", "style", "title", "dir", "lang"}),
}

REL_ORDER = ("nofollow", "noopener", "noreferrer")

_LENGTH_RE = re.compile(r"\d+%?")
_ID_RE = re.compile(r"[A-Za-z][\w\-:.]*")


@dataclass(frozen=True)
class ElementDefinition:
    """An element added to the sanitizer vocabulary.

    ``content_set`` and ``content_model`` describe the element (and feed the
    policy digest) but no content model is enforced: registering an element
    only makes its name and declared attributes known to the allow-list.
    """

    name: str
    content_set: str
    content_model: str
    attr_collections: Tuple[str, ...] = ("Common",)
    attributes: Tuple[Tuple[str, str], ...] = ()

    def attribute_names(self) -> FrozenSet[str]:
        names = {attr for attr, _ in self.attributes}
        for collection in self.attr_collections:
            names |= ATTRIBUTE_COLLECTIONS.get(collection, frozenset())
        return frozenset(names)

    def boolean_attributes(self) -> FrozenSet[str]:
        return frozenset(attr for attr, kind in self.attributes if kind.startswith("Bool#"))


@dataclass(frozen=True)
class SanitizationPolicy:
    elements: Tuple[str, ...]
    attributes: Tuple[str, ...]
    enable_id: bool = True
    allowed_frame_targets: Tuple[str, ...] = ("_blank",)
    allowed_rel: Tuple[str, ...] = ()
    nofollow: bool = True
    target_noopener: bool = True
    custom_elements: Tuple[ElementDefinition, ...] = ()
    protocols: Tuple[str, ...] = ("http", "https", "mailto", "ftp", "nntp", "news", "tel")

    def serialize(self) -> str:
        payload = asdict(self)
        payload["revision"] = DEFINITION_REVISION
        return json.dumps(payload, sort_keys=True, separators=(",", ":"))

    def digest(self) -> str:
        return hashlib.sha256(self.serialize().encode("utf-8")).hexdigest()


DEFAULT_POLICY = SanitizationPolicy(
    elements=(
        "p",
        "br",
        "small",
        "strong", "b",
        "em", "i",
        "strike",
        "sub", "sup",
        "ins", "del",
        "ol", "ul", "li",
        "h1", "h2", "h3", "h4", "h5", "h6",
        "dl", "dd", "dt",
        "pre", "code", "samp", "kbd",
        "q", "blockquote", "abbr", "cite",
        "table", "thead", "tbody", "th", "tr", "td",
        "a", "span",
        "img",
        "details", "summary",
    ),
    attributes=(
        "img.src", "img.title", "img.alt", "img.width", "img.height", "img.style",
        "a.href", "a.target", "a.rel", "a.id",
        "td.colspan", "td.rowspan", "th.colspan", "th.rowspan",
        "*.class", "details.open",
    ),
    custom_elements=(
        ElementDefinition("details", "Block", "Flow", ("Common",), (("open", "Bool#open"),)),
        ElementDefinition("summary", "Inline", "Inline", ("Common",)),
    ),
)


@dataclass(frozen=True)
class CompiledDefinition:
    digest: str
    tags: FrozenSet[str]
    attributes: Dict[str, FrozenSet[str]]
    global_attributes: FrozenSet[str]
    boolean_attributes: Dict[str, FrozenSet[str]] = field(default_factory=dict)
    protocols: FrozenSet[str] = frozenset()
    frame_targets: FrozenSet[str] = frozenset()
    allowed_rel: FrozenSet[str] = frozenset()
    nofollow: bool = True
    target_noopener: bool = True

    def allows(self, tag: str, attr: str, value: str) -> bool:
        """Attribute filter handed to bleach."""
        if attr not in self.attributes.get(tag, ()) and attr not in self.global_attributes:
            return False
        value = value.strip()
        if attr in self.boolean_attributes.get(tag, ()):
            return value.lower() in ("", attr)
        if attr == "target":
            return value in self.frame_targets
        if attr == "id":
            return bool(_ID_RE.fullmatch(value))
        if attr in ("width", "height"):
            return bool(_LENGTH_RE.fullmatch(value))
        if attr in ("colspan", "rowspan"):
            return value.isdigit()
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "digest": self.digest,
            "tags": sorted(self.tags),
            "attributes": {tag: sorted(attrs) for tag, attrs in sorted(self.attributes.items())},
            "global_attributes": sorted(self.global_attributes),
            "boolean_attributes": {tag: sorted(attrs) for tag, attrs in sorted(self.boolean_attributes.items())},
            "protocols": sorted(self.protocols),
            "frame_targets": sorted(self.frame_targets),
            "allowed_rel": sorted(self.allowed_rel),
            "nofollow": self.nofollow,
            "target_noopener": self.target_noopener,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "CompiledDefinition":
        return cls(
            digest=str(payload["digest"]),
            tags=frozenset(payload["tags"]),
            attributes={tag: frozenset(attrs) for tag, attrs in payload["attributes"].items()},
            global_attributes=frozenset(payload["global_attributes"]),
            boolean_attributes={tag: frozenset(attrs) for tag, attrs in payload["boolean_attributes"].items()},
            protocols=frozenset(payload["protocols"]),
            frame_targets=frozenset(payload["frame_targets"]),
            allowed_rel=frozenset(payload["allowed_rel"]),
            nofollow=bool(payload["nofollow"]),
            target_noopener=bool(payload["target_noopener"]),
        )


def compile_definition(policy: SanitizationPolicy) -> CompiledDefinition:
    custom = {element.name: element for element in policy.custom_elements}
    known = BASE_ELEMENTS | set(custom)

    tags = set()
    for name in policy.elements:
        if name not in known:
            logger.warning("Element %s is not defined, dropping it from the allow-list", name)
            continue
        tags.add(name)

    attributes: Dict[str, set] = {}
    global_attributes = set()
    for entry in policy.attributes:
        tag, _, attr = entry.partition(".")
        if not tag or not attr:
            logger.warning("Malformed attribute entry %r ignored", entry)
            continue
        if tag == "*":
            global_attributes.add(attr)
            continue
        if tag not in tags:
            logger.warning("Attribute %s ignored, element %s is not allowed", entry, tag)
            continue
        if tag in custom and attr not in custom[tag].attribute_names():
            logger.warning("Attribute %s ignored, element %s does not define it", entry, tag)
            continue
        attributes.setdefault(tag, set()).add(attr)

    if not policy.enable_id:
        global_attributes.discard("id")
        for attrs in attributes.values():
            attrs.discard("id")

    boolean_attributes = {
        name: element.boolean_attributes() for name, element in custom.items() if name in tags
    }

    return CompiledDefinition(
        digest=policy.digest(),
        tags=frozenset(tags),
        attributes={tag: frozenset(attrs) for tag, attrs in attributes.items()},
        global_attributes=frozenset(global_attributes),
        boolean_attributes={tag: attrs for tag, attrs in boolean_attributes.items() if attrs},
        protocols=frozenset(policy.protocols),
        frame_targets=frozenset(policy.allowed_frame_targets),
        allowed_rel=frozenset(policy.allowed_rel),
        nofollow=policy.nofollow,
        target_noopener=policy.target_noopener,
    )


def check_cache_dir(cache_dir: str) -> None:
    if not os.path.isdir(cache_dir):
        raise ConfigurationError(f"Cache directory {cache_dir} does not exist")
    if not os.access(cache_dir, os.W_OK | os.X_OK):
        raise ConfigurationError(f"Cache directory {cache_dir} is not writable")


class DefinitionCache:
    """Compiled definitions stored as JSON files in the cache directory."""

    def __init__(self, cache_dir: str) -> None:
        self.cache_dir = cache_dir

    def path_for(self, digest: str) -> str:
        return os.path.join(self.cache_dir, f"sanitizer-{digest}.json")

    def load(self, digest: str) -> Optional[CompiledDefinition]:
        path = self.path_for(digest)
        try:
            with open(path, encoding="utf-8") as fh:
                payload = json.load(fh)
            definition = CompiledDefinition.from_dict(payload)
        except FileNotFoundError:
            return None
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as exc:
            logger.warning("Ignoring unusable sanitizer cache %s: %s", path, exc)
            return None
        if definition.digest != digest:
            logger.warning("Ignoring sanitizer cache %s compiled for another policy", path)
            return None
        return definition

    def store(self, definition: CompiledDefinition) -> None:
        # Written to a temp file first, concurrent writers store identical content.
        try:
            fd, tmp_path = tempfile.mkstemp(dir=self.cache_dir, prefix=".sanitizer-", suffix=".tmp")
        except OSError as exc:
            logger.warning("Unable to write sanitizer cache to %s: %s", self.cache_dir, exc)
            return
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(definition.to_dict(), fh, sort_keys=True)
            os.replace(tmp_path, self.path_for(definition.digest))
        except OSError as exc:
            logger.warning("Unable to write sanitizer cache to %s: %s", self.cache_dir, exc)
            with suppress(FileNotFoundError):
                os.unlink(tmp_path)


class PolicyFilter(Filter):
    """Token filter applied after bleach has removed everything not allowed."""

    def __init__(self, source, definition: CompiledDefinition) -> None:
        super().__init__(source)
        self.definition = definition

    def __iter__(self) -> Iterator[Dict[str, Any]]:
        after_pre = False
        for token in super().__iter__():
            token_type = token["type"]
            if token_type in ("StartTag", "EmptyTag"):
                self._rewrite_attributes(token)
            elif after_pre and token_type in ("Characters", "SpaceCharacters") and token["data"].startswith("\n"):
                # The parser swallows the first newline after <pre>, keep the author's one.
                token = dict(token, data="\n" + token["data"])
            after_pre = token_type == "StartTag" and token["name"] == "pre"
            yield token

    def _rewrite_attributes(self, token: Dict[str, Any]) -> None:
        attrs = token.get("data") or {}
        name = token["name"]
        for attr in self.definition.boolean_attributes.get(name, ()):
            if (None, attr) in attrs:
                attrs[(None, attr)] = attr
        if name == "a":
            self._harden_link(attrs)
        token["data"] = attrs

    def _harden_link(self, attrs: Dict[Tuple[Optional[str], str], str]) -> None:
        target = attrs.get((None, "target"))
        href = attrs.get((None, "href"), "")
        wanted = {rel for rel in attrs.get((None, "rel"), "").lower().split() if rel in self.definition.allowed_rel}
        if self.definition.nofollow and (target or _is_outbound(href)):
            wanted.add("nofollow")
        if self.definition.target_noopener and target:
            wanted.update(("noopener", "noreferrer"))

        rel = [value for value in REL_ORDER if value in wanted] + sorted(wanted.difference(REL_ORDER))
        if rel:
            attrs[(None, "rel")] = " ".join(rel)
        else:
            attrs.pop((None, "rel"), None)


def _is_outbound(href: str) -> bool:
    try:
        return bool(urlsplit(href.strip()).netloc)
    except ValueError:
        return False


class HtmlSanitizer:
    """Reduce untrusted HTML to the subset allowed by a ``SanitizationPolicy``."""

    def __init__(self, cache_dir: str, policy: SanitizationPolicy = DEFAULT_POLICY) -> None:
        check_cache_dir(cache_dir)
        self.policy = policy
        self.cache = DefinitionCache(cache_dir)

        digest = policy.digest()
        definition = self.cache.load(digest)
        if definition is None:
            logger.debug("Compiling sanitizer definition %s", digest)
            definition = compile_definition(policy)
            self.cache.store(definition)
        self.definition = definition
        self._css_sanitizer = CSSSanitizer()

    def sanitize(self, html: Optional[str]) -> str:
        if not html:
            return ""
        # bleach cleaners are not thread-safe, build one per call.
        cleaner = bleach.Cleaner(
            tags=self.definition.tags,
            attributes=self.definition.allows,
            protocols=self.definition.protocols,
            strip=True,
            strip_comments=True,
            filters=[partial(PolicyFilter, definition=self.definition)],
            css_sanitizer=self._css_sanitizer,
        )
        return cleaner.clean(html)
