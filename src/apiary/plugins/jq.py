"""
JQ plugin.

Stores a jq filter together with the JSON document it is written against.
The kind has no perform capability; filters are evaluated by the client.
"""

from typing import Annotated, ClassVar

from pydantic import Field

from apiary.plugins.base import Plugin
from apiary.schema import EntryData, Kind, NullAsEmpty

DEFAULT_JSON = """{
  "string": "string",
  "number": 42,
  "bool": true,
  "list": [1, 2, 3],
  "null": null
}"""


class JQRequest(EntryData):
    KIND: ClassVar[str] = Kind.JQ.value

    query: str = "."
    json_data: str = Field(default=DEFAULT_JSON, alias="json")


class JQResponse(EntryData):
    KIND: ClassVar[str] = Kind.JQ.value

    response: Annotated[tuple[str, ...], NullAsEmpty] = ()


plugin_jq = Plugin(
    kind=Kind.JQ.value,
    title="JQ",
    request_type=JQRequest,
    response_type=JQResponse,
)
