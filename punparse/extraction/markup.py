"""HTML to BBCode conversion for post messages and signatures."""
import re

from bs4 import Comment, NavigableString, Tag

_WHITESPACE = re.compile(r"\s+")
_WROTE_SUFFIX = " wrote:"


def to_bbcode(element: Tag) -> str:
    """Convert a .postmsg or .postsignature element to BBCode."""
    parts: list[str] = []
    _convert_children(element, parts, preformatted=False)
    return "".join(parts).strip()


def contains_smilies(element: Tag) -> bool:
    """True if there is at least one smiley image in the element."""
    for img in element.find_all("img"):
        classes = img.get("class") or []
        if "postimg" not in classes and "sigimage" not in classes:
            return True
    return False


def _convert_children(element: Tag, parts: list[str], preformatted: bool) -> None:
    for node in element.children:
        _convert(node, parts, preformatted)


def _convert(node, parts: list[str], preformatted: bool) -> None:
    if isinstance(node, Comment):
        return
    if isinstance(node, NavigableString):
        text = str(node)
        parts.append(text if preformatted else _WHITESPACE.sub(" ", text))
        return
    if not isinstance(node, Tag):
        return

    name = node.name
    classes = node.get("class") or []

    if name == "a":
        parts.append(f"[url={node.get('href', '')}]")
        _convert_children(node, parts, preformatted)
        parts.append("[/url]")
    elif name in ("b", "strong"):
        _wrap(node, "b", parts, preformatted)
    elif name in ("i", "em"):
        _wrap(node, "i", parts, preformatted)
    elif name == "span" and "bbu" in classes:
        _wrap(node, "u", parts, preformatted)
    elif name == "blockquote":
        author = _quote_author(node)
        parts.append(f"[quote={author}]" if author else "[quote]")
        _convert_children(node, parts, preformatted)
        parts.append("[/quote]")
    elif name == "div" and "codebox" in classes:
        parts.append("[code]")
        _convert_children(node, parts, preformatted=True)
        parts.append("[/code]")
    elif name == "h4":
        # Quote and code headings are rendered by their container
        return
    elif name == "br":
        parts.append("\n")
    elif name == "p":
        previous = node.find_previous_sibling()
        if previous is not None and previous.name == "p":
            parts.append("\n\n")
        _convert_children(node, parts, preformatted)
    elif name == "img":
        if "postimg" in classes or "sigimage" in classes:
            parts.append(f"[img]{node.get('src', '')}[/img]")
        else:
            # Smiley
            parts.append(node.get("alt", ""))
    else:
        _convert_children(node, parts, preformatted)


def _wrap(node: Tag, code: str, parts: list[str], preformatted: bool) -> None:
    parts.append(f"[{code}]")
    _convert_children(node, parts, preformatted)
    parts.append(f"[/{code}]")


def _quote_author(blockquote: Tag) -> str | None:
    box = blockquote.find(True, recursive=False)
    if box is None:
        return None
    heading = box.find(True, recursive=False)
    if heading is None or heading.name != "h4":
        return None
    author = " ".join(heading.get_text().split())
    if author.endswith(_WROTE_SUFFIX):
        author = author[: -len(_WROTE_SUFFIX)]
    return author or None
