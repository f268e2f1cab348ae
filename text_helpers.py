import html
import re
from html.parser import HTMLParser


def _html_to_plain_text(raw_html: str) -> str:
    if not raw_html:
        return ""
    text = str(raw_html)
    text = re.sub(r"(?i)<\s*br\s*/?\s*>", "\n", text)
    text = re.sub(r"(?i)</\s*(p|div|li|h[1-6]|blockquote|pre)\s*>", "\n", text)
    text = re.sub(r"(?i)</\s*(ul|ol)\s*>", "\n", text)
    text = re.sub(r"<[^>]+>", "", text)
    text = html.unescape(text)
    text = text.replace("\r", "\n").replace("\xa0", " ")
    raw_lines = [line.rstrip() for line in text.split("\n")]
    cleaned_lines = []
    blank_streak = 0
    for line in raw_lines:
        if not line.strip():
            blank_streak += 1
            if blank_streak > 1:
                continue
            cleaned_lines.append("")
            continue
        blank_streak = 0
        cleaned_lines.append(re.sub(r"\s+", " ", line).strip())
    return "\n".join(cleaned_lines).strip()


class _AnnotationHTMLSanitizer(HTMLParser):
    """Keep the inline/block tags a note body may use, drop everything else."""

    _allowed_tags = {
        "p",
        "div",
        "br",
        "ul",
        "ol",
        "li",
        "strong",
        "b",
        "em",
        "i",
        "u",
        "s",
        "mark",
        "sup",
        "sub",
        "blockquote",
        "q",
        "cite",
        "pre",
        "code",
        "h1",
        "h2",
        "h3",
        "h4",
        "span",
        "a",
    }
    _void_tags = {"br"}
    _dropped_content_tags = {"script", "style"}

    def __init__(self):
        super().__init__(convert_charrefs=True)
        self._parts = []
        self._skip_depth = 0

    def handle_starttag(self, tag, attrs):
        tag = tag.lower()
        if tag in self._dropped_content_tags:
            self._skip_depth += 1
            return
        if tag not in self._allowed_tags:
            return
        clean_attrs = []
        attrs_dict = {name.lower(): (value or "") for name, value in attrs}
        if tag == "a":
            href = attrs_dict.get("href", "").strip()
            if href.startswith(("http://", "https://", "mailto:")):
                clean_attrs.append(f'href="{html.escape(href, quote=True)}"')
        if tag in ("blockquote", "q"):
            cite = attrs_dict.get("cite", "").strip()
            if cite.startswith(("http://", "https://")):
                clean_attrs.append(f'cite="{html.escape(cite, quote=True)}"')
        lang = attrs_dict.get("lang", "").strip()
        if lang and re.fullmatch(r"[A-Za-z]{2,3}(-[A-Za-z0-9]{2,8})*", lang):
            clean_attrs.append(f'lang="{lang}"')
        attr_text = f" {' '.join(clean_attrs)}" if clean_attrs else ""
        self._parts.append(f"<{tag}{attr_text}>")

    def handle_endtag(self, tag):
        tag = tag.lower()
        if tag in self._dropped_content_tags:
            self._skip_depth = max(0, self._skip_depth - 1)
            return
        if tag in self._allowed_tags and tag not in self._void_tags:
            self._parts.append(f"</{tag}>")

    def handle_startendtag(self, tag, attrs):
        self.handle_starttag(tag, attrs)
        if tag.lower() in self._dropped_content_tags:
            self._skip_depth = max(0, self._skip_depth - 1)

    def handle_data(self, data):
        if data and not self._skip_depth:
            self._parts.append(html.escape(data, quote=False))

    def get_html(self) -> str:
        return "".join(self._parts).strip()


def _sanitize_note_html(raw_html: str) -> str:
    sanitizer = _AnnotationHTMLSanitizer()
    sanitizer.feed(raw_html or "")
    sanitizer.close()
    return sanitizer.get_html()
