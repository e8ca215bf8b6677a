# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Minimal HTML fragment tree for structural text lookup.

Email clients wrap the visible message in a predictable skeleton::

    <html>
     <head></head>
     <body> <span style="...">the message</span> <br> </body>
    </html>

``parse_fragment`` turns such a fragment into a small node tree (elements
and text nodes) so callers can walk it by structural role instead of by
regular expression.  The parser is lenient: unclosed tags are closed at
end of input, stray end tags are ignored, and void elements such as
``<br>`` never take children.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from html.parser import HTMLParser


# Elements that never have content or an end tag
_VOID_ELEMENTS = frozenset(
    {
        "area",
        "base",
        "br",
        "col",
        "embed",
        "hr",
        "img",
        "input",
        "link",
        "meta",
        "source",
        "track",
        "wbr",
    }
)


@dataclass
class Node:
    """An element or text node.

    Attributes:
        tag: Lower-cased element name, or None for text nodes.
        attrs: Element attributes (empty for text nodes).
        text: Decoded character data (text nodes only).
        children: Child nodes in document order.
    """

    tag: str | None
    attrs: dict[str, str | None] = field(default_factory=dict)
    text: str = ""
    children: list[Node] = field(default_factory=list)

    @property
    def is_element(self) -> bool:
        return self.tag is not None

    def element_children(self) -> list[Node]:
        """Child elements, skipping text nodes."""
        return [child for child in self.children if child.is_element]

    def first_element(self) -> Node | None:
        elements = self.element_children()
        return elements[0] if elements else None

    def last_element(self) -> Node | None:
        elements = self.element_children()
        return elements[-1] if elements else None

    def text_content(self) -> str:
        """Concatenated text of this node and all descendants."""
        if not self.is_element:
            return self.text
        return "".join(child.text_content() for child in self.children)


class _TreeBuilder(HTMLParser):
    """HTMLParser that assembles a ``Node`` tree under a synthetic root."""

    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self.root = Node(tag="#fragment")
        self._stack: list[Node] = [self.root]

    def handle_starttag(
        self, tag: str, attrs: list[tuple[str, str | None]]
    ) -> None:
        node = Node(tag=tag.lower(), attrs=dict(attrs))
        self._stack[-1].children.append(node)
        if node.tag not in _VOID_ELEMENTS:
            self._stack.append(node)

    def handle_startendtag(
        self, tag: str, attrs: list[tuple[str, str | None]]
    ) -> None:
        self._stack[-1].children.append(
            Node(tag=tag.lower(), attrs=dict(attrs))
        )

    def handle_endtag(self, tag: str) -> None:
        tag = tag.lower()
        # Pop back to the matching open element; ignore stray end tags
        for depth in range(len(self._stack) - 1, 0, -1):
            if self._stack[depth].tag == tag:
                del self._stack[depth:]
                return

    def handle_data(self, data: str) -> None:
        parent = self._stack[-1]
        if parent.children and not parent.children[-1].is_element:
            parent.children[-1].text += data
        else:
            parent.children.append(Node(tag=None, text=data))


def parse_fragment(html_content: str) -> Node:
    """Parse an HTML fragment.

    Returns:
        Synthetic ``#fragment`` node whose children are the fragment's
        top-level nodes.
    """
    builder = _TreeBuilder()
    builder.feed(html_content)
    builder.close()
    return builder.root
