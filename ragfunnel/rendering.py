"""HTML and structured renderings of recorded citations."""

from __future__ import annotations

import html
import json
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal
from urllib.parse import urlsplit

from ragfunnel.errors import InvalidQueryError

if TYPE_CHECKING:
    from ragfunnel.models import Citation

CitationStyle = Literal["inline", "footnote", "end", "none", "array", "json"]
CITATION_STYLES: tuple[str, ...] = ("inline", "footnote", "end", "none", "array", "json")

ALLOWED_URL_SCHEMES = frozenset({"http", "https", "mailto", "ftp"})
CSS_PREFIX = "ragfunnel"

_MARKER_PATTERN = re.compile(r"\[(\d+)\]")
_SCRIPT_PATTERN = re.compile(r"<(script|style)\b[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL)
_TAG_PATTERN = re.compile(r"<[^>]+>")
_WHITESPACE_PATTERN = re.compile(r"\s+")


@dataclass(frozen=True)
class RenderOptions:
    """Presentation settings for citation rendering."""

    show_links: bool = True
    link_target: str = "_blank"
    separator: str = ", "
    show_numbers: bool = True
    show_scores: bool = False
    add_sources_section: bool = True
    replace_markers: bool = True
    escape_response: bool = True
    sources_heading: str = "Sources:"
    references_heading: str = "References:"


def safe_url(url: str) -> str:
    """Return an attribute-escaped URL, or "" for disallowed schemes.

    Returns:
        Escaped URL safe for an ``href`` attribute.
    """
    url = (url or "").strip()
    if not url:
        return ""
    scheme = urlsplit(url).scheme.lower()
    if scheme not in ALLOWED_URL_SCHEMES:
        return ""
    return html.escape(url, quote=True)


def _display_title(citation: Citation) -> str:
    return html.escape(citation.title or citation.source_url)


def _link(citation: Citation, url: str, label: str, options: RenderOptions) -> str:
    return (
        f'<a href="{url}" target="{html.escape(options.link_target, quote=True)}" '
        f'rel="noopener noreferrer" class="{CSS_PREFIX}-citation-link" '
        f'data-citation-id="{citation.chunk_id}">{label}</a>'
    )


def replace_markers(text: str, citations: list[Citation], options: RenderOptions) -> str:
    """Rewrite ``[n]`` markers that refer to a recorded citation.

    Markers outside ``1..len(citations)`` are left untouched.

    Returns:
        Text with in-range markers turned into superscript links.
    """

    def _replace(match: re.Match[str]) -> str:
        number = int(match.group(1))
        if not 1 <= number <= len(citations):
            return match.group(0)
        citation = citations[number - 1]
        url = safe_url(citation.source_url)
        if url and options.show_links:
            return f"<sup>{_link(citation, url, f'[{number}]', options)}</sup>"
        return f'<sup class="{CSS_PREFIX}-citation-marker">[{number}]</sup>'

    return _MARKER_PATTERN.sub(_replace, text)


def sources_list_html(citations: list[Citation], options: RenderOptions) -> str:
    """Render the numbered source list.

    Returns:
        A ``<div>`` of citation items, or "" when there are none.
    """
    if not citations:
        return ""

    items = []
    for number, citation in enumerate(citations, start=1):
        parts = []
        if options.show_numbers:
            parts.append(f'<span class="{CSS_PREFIX}-citation-number">[{number}]</span>')

        url = safe_url(citation.source_url)
        title = _display_title(citation)
        if url and options.show_links:
            parts.append(_link(citation, url, title, options))
        else:
            parts.append(f'<span class="{CSS_PREFIX}-citation-title">{title}</span>')

        if options.show_scores:
            parts.append(
                f'<span class="{CSS_PREFIX}-citation-score">({citation.relevance:.2f})</span>'
            )

        items.append(f'<span class="{CSS_PREFIX}-citation-item">{" ".join(parts)}</span>')

    return f'<div class="{CSS_PREFIX}-citations">{options.separator.join(items)}</div>'


def _sources_section(citations: list[Citation], options: RenderOptions) -> str:
    listing = sources_list_html(citations, options)
    if not listing:
        return ""
    return (
        f'\n\n<div class="{CSS_PREFIX}-citations-section">\n'
        f'<div class="{CSS_PREFIX}-citations-title">{html.escape(options.sources_heading)}</div>\n'
        f"{listing}\n</div>"
    )


def _response_body(response_text: str, options: RenderOptions) -> str:
    return html.escape(response_text, quote=False) if options.escape_response else response_text


def render_inline(response_text: str, citations: list[Citation], options: RenderOptions) -> str:
    """Link in-text markers and append a sources section."""
    body = _response_body(response_text, options)
    if options.replace_markers:
        body = replace_markers(body, citations, options)
    if options.add_sources_section:
        body += _sources_section(citations, options)
    return body


def render_footnote(response_text: str, citations: list[Citation], options: RenderOptions) -> str:
    """Link in-text markers and append a back-referenced reference list."""
    body = _response_body(response_text, options)
    if options.replace_markers:
        body = replace_markers(body, citations, options)

    target = html.escape(options.link_target, quote=True)
    superscripts = []
    footnotes = []
    for number, citation in enumerate(citations, start=1):
        url = safe_url(citation.source_url)
        title = _display_title(citation)
        if url and options.show_links:
            superscripts.append(
                f'<sup id="fn-{number}" class="{CSS_PREFIX}-footnote">'
                f'<a href="{url}" target="{target}" rel="noopener noreferrer">{number}</a></sup>'
            )
            source = f'<a href="{url}" target="{target}" rel="noopener noreferrer">{title}</a>'
        else:
            superscripts.append(
                f'<sup id="fn-{number}" class="{CSS_PREFIX}-footnote">{number}</sup>'
            )
            source = f'<span class="{CSS_PREFIX}-citation-title">{title}</span>'
        footnotes.append(
            f'<li id="fnref-{number}" class="{CSS_PREFIX}-footnote-item">{number} {source} '
            f'<a href="#fn-{number}" class="{CSS_PREFIX}-footnote-back">↩</a></li>'
        )

    if footnotes:
        heading = html.escape(options.references_heading)
        body += " " + "".join(superscripts)
        body += (
            f'\n\n<div class="{CSS_PREFIX}-footnotes">\n'
            f'<div class="{CSS_PREFIX}-footnotes-title">{heading}</div>\n'
            f'<ol class="{CSS_PREFIX}-footnotes-list">{chr(10).join(footnotes)}</ol>\n</div>'
        )
    return body


def render_end(response_text: str, citations: list[Citation], options: RenderOptions) -> str:
    """Append the source list without touching the response text."""
    return _response_body(response_text, options) + _sources_section(citations, options)


def citations_to_array(citations: list[Citation], options: RenderOptions) -> list[dict[str, Any]]:
    """Plain mappings for API responses, numbered in recorded order."""
    items = []
    for number, citation in enumerate(citations, start=1):
        item: dict[str, Any] = {
            "number": number if options.show_numbers else None,
            "chunk_id": citation.chunk_id,
            "source_url": citation.source_url,
            "title": citation.title,
            "source_type": citation.source_type,
        }
        if options.show_scores:
            item["score"] = citation.relevance
        items.append(item)
    return items


def render_citations(
    citations: list[Citation],
    style: str = "inline",
    response_text: str = "",
    options: RenderOptions | None = None,
) -> str | list[dict[str, Any]]:
    """Render citations in the requested style.

    Numbering always follows the order of ``citations``. With no citations,
    text styles return the response text unchanged.

    Returns:
        A list of mappings for ``array``; a string for every other style.

    Raises:
        InvalidQueryError: If the style is unknown.
    """
    if style not in CITATION_STYLES:
        msg = f"Unknown citation style: {style}"
        raise InvalidQueryError(msg)

    options = options or RenderOptions()
    if style == "array":
        return citations_to_array(citations, options)
    if style == "json":
        return json.dumps([citation.to_dict() for citation in citations])
    if style == "none" or not citations:
        return _response_body(response_text, options)
    if style == "footnote":
        return render_footnote(response_text, citations, options)
    if style == "end":
        return render_end(response_text, citations, options)
    return render_inline(response_text, citations, options)


def format_response_json(
    response_text: str,
    citations: list[Citation],
    style: str = "inline",
    options: RenderOptions | None = None,
) -> dict[str, Any]:
    """Bundle a rendered response with its citations for API clients.

    Returns:
        Mapping with the rendered ``content``, the untouched
        ``raw_content``, the ``citations`` array and ``has_citations``.

    Raises:
        InvalidQueryError: If ``style`` is not a text style.
    """
    if style in {"array", "json"}:
        msg = f"Citation style {style} does not render text"
        raise InvalidQueryError(msg)

    options = options or RenderOptions()
    return {
        "content": render_citations(citations, style, response_text, options),
        "raw_content": response_text,
        "citations": citations_to_array(citations, options),
        "has_citations": bool(citations),
    }


def extract_plain_text(html_content: str) -> str:
    """Strip markup from a rendered response, keeping citation markers.

    Returns:
        Text with tags removed, entities decoded and whitespace collapsed.
    """
    text = _SCRIPT_PATTERN.sub("", html_content or "")
    text = html.unescape(_TAG_PATTERN.sub("", text))
    return _WHITESPACE_PATTERN.sub(" ", text).strip()
