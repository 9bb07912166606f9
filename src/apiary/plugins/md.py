"""
Markdown plugin.

Rendering a note produces an HTML fragment through markdown-it (CommonMark
plus tables and strikethrough). Notes keep no history: the rendered response
is returned to the caller but never stored.
"""

from typing import ClassVar

from markdown_it import MarkdownIt

from apiary.plugins.base import Plugin, PluginContext, discard_response, require_payload
from apiary.schema import EntryData, Kind

DEFAULT_MARKDOWN = """\
# New note

Write **markdown** here.

- lists
- `code`
- [links](https://example.com)
"""


class MDRequest(EntryData):
    KIND: ClassVar[str] = Kind.MD.value

    data: str = DEFAULT_MARKDOWN


class MDResponse(EntryData):
    KIND: ClassVar[str] = Kind.MD.value

    data: str = ""


_parser = MarkdownIt("commonmark").enable(["table", "strikethrough"])


def render_markdown(text: str) -> str:
    """Render markdown to an HTML fragment."""
    return _parser.render(text)


def send_md(context: PluginContext, payload: EntryData) -> EntryData:
    payload = require_payload(payload, MDRequest)
    return MDResponse(data=render_markdown(payload.data))


plugin_md = Plugin(
    kind=Kind.MD.value,
    title="MD",
    request_type=MDRequest,
    response_type=MDResponse,
    perform=send_md,
    record_response_hook=discard_response,
)
