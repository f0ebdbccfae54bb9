"""HTML helpers shared by the composers, the remote orchestrator and views.

Model output is untrusted and frequently truncated mid-tag, so
validation here never rejects: ``validate_markup`` reports what it found
and always hands back a repaired string that can be rendered.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

ALLOWED_TAGS = frozenset({
    "p", "ul", "ol", "li", "strong", "em", "a", "small", "br", "mark",
    "img", "video", "source", "div", "span", "h4",
})
ALLOWED_ATTRS = frozenset({
    "href", "target", "rel", "download", "src", "poster", "controls", "alt", "type", "class",
})
_DROP_WITH_CONTENT = frozenset({"script", "style", "iframe", "object", "embed"})
_URL_ATTRS = frozenset({"href", "src", "poster"})

_VOID_TAGS = frozenset({"br", "img", "source", "hr", "input", "meta", "link", "wbr"})
_SIBLING_CLOSES = frozenset({"li", "p"})
_NO_HIGHLIGHT = frozenset({"mark", "script", "style"})
_TAG_RE = re.compile(r"<(/?)([a-zA-Z][a-zA-Z0-9-]*)([^<>]*?)(/?)>")
_TRAILING_PARTIAL_TAG_RE = re.compile(r"<[^>]*$")


def escape_html(value: object) -> str:
    return (
        str(value)
        .replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
        .replace("'", "&#039;")
    )


def _fragment(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "html.parser")


def strip_tags(html: str) -> str:
    """Plain text of an HTML fragment (entities decoded)."""
    if not html:
        return ""
    return _fragment(html).get_text()


# ── Validation / repair ───────────────────────────────────────


@dataclass
class MarkupCheck:
    html: str
    issues: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.issues


def repair_markup(html: str) -> MarkupCheck:
    """Best-effort structural repair of a model-produced fragment.

    Drops a trailing unterminated tag, closes an open ``<li>`` or ``<p>``
    when a sibling of the same kind opens, removes closing tags that have no
    opener and closes any element left open at the end (innermost first).
    """
    issues: list[str] = []
    text = html or ""

    trimmed = _TRAILING_PARTIAL_TAG_RE.sub("", text)
    if trimmed != text:
        issues.append("unterminated tag at end")
        text = trimmed

    out: list[str] = []
    stack: list[str] = []
    pos = 0
    for match in _TAG_RE.finditer(text):
        out.append(text[pos:match.start()])
        pos = match.end()
        closing, name, self_closing = match.group(1), match.group(2).lower(), match.group(4)
        if not closing:
            # a new <li> or <p> ends an open sibling of the same kind
            if name in _SIBLING_CLOSES and stack and stack[-1] == name:
                stack.pop()
                issues.append(f"unclosed <{name}>")
                out.append(f"</{name}>")
            out.append(match.group(0))
            if name not in _VOID_TAGS and not self_closing:
                stack.append(name)
            continue
        if name in _VOID_TAGS:
            continue
        if name not in stack:
            issues.append(f"stray </{name}>")
            continue
        while stack:
            top = stack.pop()
            if top == name:
                break
            issues.append(f"unclosed <{top}>")
            out.append(f"</{top}>")
        out.append(match.group(0))
    out.append(text[pos:])

    for name in reversed(stack):
        issues.append(f"unclosed <{name}>")
        out.append(f"</{name}>")

    return MarkupCheck(html="".join(out), issues=issues)


def validate_markup(html: str) -> MarkupCheck:
    check = repair_markup(html)
    if check.issues:
        logger.warning("repaired model markup: %s", "; ".join(check.issues))
    return check


# ── Profile URL canonicalization ──────────────────────────────

# Path segment followed by something that is not a continuation of the
# same URL; repository or deeper links are left alone.
_END = r"/?(?![A-Za-z0-9_-]|[/.][A-Za-z0-9_-])"

_PROFILE_PATTERNS = {
    "linkedin": re.compile(r"https?://(?:www?\.)?linkedin\.com/in/[A-Za-z0-9_-]+" + _END, re.I),
    "github": re.compile(r"https?://(?:www\.)?github\.com/[A-Za-z0-9_-]+" + _END, re.I),
    "kaggle": re.compile(r"https?://(?:www\.)?kaggle\.com/[A-Za-z0-9_-]+" + _END, re.I),
    "whatsapp": re.compile(r"https?://wa\.me/\+?\d+", re.I),
}

_CANONICAL_SOURCES = {
    "linkedin": re.compile(r"https?://\S*linkedin\S*", re.I),
    "github": re.compile(r"https?://\S*github\S*", re.I),
    "kaggle": re.compile(r"https?://\S*kaggle\S*", re.I),
    "whatsapp": re.compile(r"https?://wa\.me/[0-9]+", re.I),
}

_TRAILING_PUNCT = ".,;:)'\""


def canonical_profile_urls(contact_text: str) -> dict[str, str]:
    """Profile URLs listed in the contact item's text, keyed by network."""
    found: dict[str, str] = {}
    for name, pattern in _CANONICAL_SOURCES.items():
        match = pattern.search(contact_text or "")
        if match:
            found[name] = match.group(0).rstrip(_TRAILING_PUNCT)
    return found


def canonicalize_profile_urls(html: str, contact_text: str) -> str:
    """Rewrite profile links in ``html`` to the values from the contact text."""
    canon = canonical_profile_urls(contact_text)
    for name, url in canon.items():
        html = _PROFILE_PATTERNS[name].sub(lambda _m, url=url: url, html)
    return html


# ── Sanitizing / presentation ─────────────────────────────────


def sanitize_html(
    html: str,
    allowed_tags: frozenset[str] = ALLOWED_TAGS,
    allowed_attrs: frozenset[str] = ALLOWED_ATTRS,
) -> str:
    """Allowlist sanitizer: unknown tags are unwrapped, unsafe ones removed."""
    soup = _fragment(html or "")
    for node in soup.find_all(True):
        if node.decomposed:
            continue
        if node.name in _DROP_WITH_CONTENT:
            node.decompose()
            continue
        if node.name not in allowed_tags:
            node.unwrap()
            continue
        for attr in list(node.attrs):
            value = node.attrs[attr]
            if attr not in allowed_attrs:
                del node.attrs[attr]
            elif attr in _URL_ATTRS and str(value).strip().lower().startswith(("javascript:", "vbscript:")):
                del node.attrs[attr]
    return str(soup)


def highlight_terms(html: str, query: str) -> str:
    """Wrap up to four query terms (3+ chars) in ``<mark>``.

    Only text between tags is rewritten.  Tags keep their exact source
    form, so attribute quoting and bare attributes such as ``download``
    survive, and character entities are never split.
    """
    terms = [t for t in re.split(r"[^a-z0-9#+]+", (query or "").lower()) if len(t) >= 3][:4]
    if not terms or not html:
        return html
    pattern = re.compile(
        r"(&#?[A-Za-z0-9]+;)|(" + "|".join(re.escape(t) for t in terms) + ")", re.I
    )

    def mark(match: re.Match[str]) -> str:
        if match.group(1):
            return match.group(0)
        return f"<mark>{match.group(0)}</mark>"

    out: list[str] = []
    skip_depth = 0
    pos = 0
    for match in _TAG_RE.finditer(html):
        segment = html[pos:match.start()]
        out.append(segment if skip_depth else pattern.sub(mark, segment))
        out.append(match.group(0))
        pos = match.end()
        if match.group(2).lower() in _NO_HIGHLIGHT and not match.group(4):
            skip_depth = max(skip_depth - 1, 0) if match.group(1) else skip_depth + 1
    tail = html[pos:]
    out.append(tail if skip_depth else pattern.sub(mark, tail))
    return "".join(out)


def format_response(text: str) -> str:
    """Collapse runs of whitespace and turn remaining newlines into ``<br>``."""
    if not text:
        return ""
    # newlines between tags are layout, not content
    text = re.sub(r">\s*\n\s*<", "><", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    text = re.sub(r"[ \t\r\f\v]+\n", "\n", text)
    text = re.sub(r"\n[ \t\r\f\v]+\n", "\n\n", text)
    text = re.sub(r"[ \t\r\f\v]{2,}", " ", text)
    return text.strip().replace("\n", "<br>")
