from __future__ import annotations

import html
import re
from typing import Optional

_FIRST_MAJOR_HEADING_END = re.compile(r"</h[12]\s*>", re.IGNORECASE)


def render_figure(svg_code: str, caption: Optional[str] = None) -> str:
    caption_html = f"<figcaption>{html.escape(caption)}</figcaption>" if caption else ""
    return f'<figure class="synthesis-diagram">{svg_code}{caption_html}</figure>'


def splice_after_first_heading(content: str, fragment: str) -> str:
    """
    Inserts `fragment` right after the first closing h1/h2 tag.
    Content without a major heading gets the fragment prepended.
    """
    if not fragment:
        return content
    match = _FIRST_MAJOR_HEADING_END.search(content)
    if match is None:
        return f"{fragment}\n{content}"
    cut = match.end()
    return f"{content[:cut]}\n{fragment}\n{content[cut:]}"
