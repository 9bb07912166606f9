"""
Source plugins: sql-source and http-source.

A source is a stored connection descriptor rather than a request. Sources
keep no history and are stored as bare payloads. They are executed through
exploration: the source payload plus a caller argument (a query, or an
endpoint request) is turned into an ordinary sql or http payload, which is
then performed without being recorded.

The http-source also knows how to read an OpenAPI/Swagger document and
generate example requests for its endpoints.
"""

import base64
import json
import logging
from enum import Enum
from typing import Any, ClassVar
from urllib.parse import urlencode

import httpx
import yaml
from pydantic import BaseModel, ConfigDict, Field

from apiary.plugins.base import Plugin, SideTable, discard_response, require_payload
from apiary.plugins.http import HTTPRequest
from apiary.plugins.sql import Database, SQLRequest
from apiary.schema import KV, EntryData, Kind

logger = logging.getLogger(__name__)


# =============================================================================
# sql-source
# =============================================================================


class SQLSourceRequest(EntryData):
    """Connection descriptor for a database."""

    KIND: ClassVar[str] = Kind.SQL_SOURCE.value

    database: str = Database.POSTGRES.value
    dsn: str = ""


LIST_TABLES_QUERIES = {
    Database.SQLITE.value: (
        "SELECT name FROM sqlite_master "
        "WHERE type = 'table' AND name NOT LIKE 'sqlite_%' ORDER BY name"
    ),
    Database.POSTGRES.value: (
        "SELECT table_name FROM information_schema.tables "
        "WHERE table_schema = 'public' ORDER BY table_name"
    ),
    Database.MYSQL.value: "SHOW TABLES",
    Database.CLICKHOUSE.value: "SHOW TABLES",
}


def quote_identifier(name: str) -> str:
    """Quote a table name as a SQL identifier."""
    return '"' + name.replace('"', '""') + '"'


def quote_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def list_tables_query(database: str) -> str:
    """
    Query listing the tables visible through a source.

    Raises:
        ValueError: If the database engine is unknown
    """
    try:
        return LIST_TABLES_QUERIES[database]
    except KeyError:
        msg = f"unsupported database: {database}"
        raise ValueError(msg) from None


def describe_table_query(database: str, table: str) -> str:
    """Query returning one row per column of table: name, type, nullable."""
    if database == Database.SQLITE.value:
        return (
            'SELECT name, type, CASE WHEN "notnull" = 0 THEN 1 ELSE 0 END AS nullable '
            f"FROM pragma_table_info({quote_literal(table)}) ORDER BY cid"
        )
    if database == Database.POSTGRES.value:
        return (
            "SELECT column_name AS name, data_type AS type, is_nullable = 'YES' AS nullable "
            "FROM information_schema.columns "
            f"WHERE table_name = {quote_literal(table)} ORDER BY ordinal_position"
        )
    msg = f"unsupported database: {database}"
    raise ValueError(msg)


def count_rows_query(table: str) -> str:
    return f"SELECT COUNT(*) AS count FROM {quote_identifier(table)}"


def explore_sql_source(source: EntryData, query: Any) -> EntryData:
    """Build a SQL request that runs query through the source's connection."""
    source = require_payload(source, SQLSourceRequest)
    if not isinstance(query, str):
        msg = f"sql-source exploration takes a query string, got {type(query).__name__}"
        raise TypeError(msg)
    return SQLRequest(dsn=source.dsn, database=source.database, query=query)


plugin_sql_source = Plugin(
    kind=Kind.SQL_SOURCE.value,
    title="SQLSource",
    request_type=SQLSourceRequest,
    record_response_hook=discard_response,
    side_table=SideTable.PAYLOAD,
    explore=explore_sql_source,
)


# =============================================================================
# http-source
# =============================================================================


class SpecSource(str, Enum):
    """Where an http-source reads its API description from."""

    FILE = "file"  # specData holds the document itself
    URL = "url"  # specData holds a URL to fetch


class AuthType(str, Enum):
    NONE = "none"
    BASIC = "basic"
    BEARER = "bearer"
    APIKEY = "apikey"
    OAUTH = "oauth"


class AuthConfig(BaseModel):
    """Credentials added to every request built from a source."""

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    type: str = AuthType.NONE.value
    username: str = ""
    password: str = ""
    token: str = ""
    key_name: str = Field(default="", alias="keyName")
    key_value: str = Field(default="", alias="keyValue")


class HTTPSourceRequest(EntryData):
    """An API server plus the OpenAPI/Swagger document describing it."""

    KIND: ClassVar[str] = Kind.HTTP_SOURCE.value

    server_url: str = Field(default="", alias="serverUrl")
    spec_source: str = Field(default=SpecSource.FILE.value, alias="specSource")
    spec_data: str = Field(default="", alias="specData")
    auth: AuthConfig = AuthConfig()


def auth_headers(auth: AuthConfig) -> list[KV]:
    """Headers implied by a source's auth settings."""
    if auth.type == AuthType.BASIC.value:
        if not auth.username and not auth.password:
            return []
        token = base64.b64encode(f"{auth.username}:{auth.password}".encode("utf-8")).decode("ascii")
        return [KV(key="Authorization", value=f"Basic {token}")]
    if auth.type == AuthType.BEARER.value:
        return [KV(key="Authorization", value=f"Bearer {auth.token}")]
    if auth.type == AuthType.APIKEY.value:
        return [KV(key=auth.key_name, value=auth.key_value)]
    return []


def join_url(server_url: str, url: str) -> str:
    """Resolve url against server_url unless it is already absolute."""
    if "://" in url:
        return url
    if not url:
        return server_url
    return server_url.rstrip("/") + "/" + url.lstrip("/")


def explore_http_source(source: EntryData, request: Any) -> EntryData:
    """
    Build an HTTP request for one endpoint of the source.

    The request's url is taken relative to the source's server URL, and the
    source's auth headers are added unless the request sets them itself.
    """
    source = require_payload(source, HTTPSourceRequest)
    if isinstance(request, dict):
        request = HTTPRequest.model_validate(request)
    request = require_payload(request, HTTPRequest)

    own = {h.key.lower() for h in request.headers}
    headers = [h for h in auth_headers(source.auth) if h.key.lower() not in own]
    return HTTPRequest(
        url=join_url(source.server_url, request.url),
        method=request.method,
        body=request.body,
        headers=tuple(headers) + request.headers,
    )


plugin_http_source = Plugin(
    kind=Kind.HTTP_SOURCE.value,
    title="HTTPSource",
    request_type=HTTPSourceRequest,
    record_response_hook=discard_response,
    side_table=SideTable.PAYLOAD,
    explore=explore_http_source,
)


# =============================================================================
# API descriptions
# =============================================================================

HTTP_METHODS = ("get", "head", "post", "put", "patch", "delete", "options")


class ParameterInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    location: str = Field(default="query", alias="in")
    description: str = ""
    required: bool = False
    param_schema: dict[str, Any] = Field(default_factory=dict, alias="schema")
    example: Any = None


class EndpointInfo(BaseModel):
    """One operation of an API description."""

    model_config = ConfigDict(populate_by_name=True)

    path: str
    method: str
    summary: str = ""
    parameters: list[ParameterInfo] = Field(default_factory=list)
    content_type: str | None = None
    body_schema: dict[str, Any] | None = None
    body_example: Any = None
    responses: dict[str, str] = Field(default_factory=dict)


def fetch_spec(source: str, data: str, timeout: float | None = None) -> str:
    """
    Return the API description text for a source.

    Raises:
        ValueError: For an unknown spec source or a non-200 fetch
        httpx.HTTPError: If the URL cannot be fetched
    """
    if source == SpecSource.FILE.value:
        return data
    if source == SpecSource.URL.value:
        with httpx.Client(timeout=timeout or 30.0, follow_redirects=True) as client:
            response = client.get(data)
        if response.status_code != 200:
            msg = f"unexpected status code fetching spec: {response.status_code}"
            raise ValueError(msg)
        return response.text
    msg = f"unknown spec source: {source}"
    raise ValueError(msg)


def parse_spec(text: str) -> list[EndpointInfo]:
    """
    Parse a Swagger 2.0 or OpenAPI 3 document (JSON or YAML).

    Endpoints are ordered by path, then by method in HTTP_METHODS order.
    References ($ref) are kept as-is, not expanded.

    Raises:
        ValueError: If the text is not a mapping with a "paths" section
    """
    try:
        doc = yaml.safe_load(text)
    except yaml.YAMLError as e:
        msg = f"invalid API description: {e}"
        raise ValueError(msg) from e
    if not isinstance(doc, dict) or not isinstance(doc.get("paths"), dict):
        msg = "API description has no 'paths' section"
        raise ValueError(msg)

    swagger2 = "swagger" in doc
    endpoints = []
    for path in sorted(doc["paths"]):
        item = doc["paths"][path] or {}
        shared = item.get("parameters", [])
        for method in HTTP_METHODS:
            operation = item.get(method)
            if not isinstance(operation, dict):
                continue
            endpoints.append(_endpoint(path, method, operation, shared, doc, swagger2))
    return endpoints


def _endpoint(
    path: str,
    method: str,
    operation: dict[str, Any],
    shared: list[dict[str, Any]],
    doc: dict[str, Any],
    swagger2: bool,
) -> EndpointInfo:
    parameters = []
    content_type = None
    body_schema = None
    body_example = None

    for param in [*shared, *operation.get("parameters", [])]:
        if not isinstance(param, dict) or "name" not in param:
            continue
        if swagger2 and param.get("in") == "body":
            consumes = operation.get("consumes") or doc.get("consumes") or ["application/json"]
            content_type = consumes[0]
            body_schema = param.get("schema")
            body_example = param.get("example")
            continue
        schema = param.get("schema")
        if schema is None and "type" in param:
            schema = {k: param[k] for k in ("type", "format", "enum") if k in param}
        parameters.append(ParameterInfo(
            name=param["name"],
            location=param.get("in", "query"),
            description=param.get("description", ""),
            required=bool(param.get("required", False)),
            param_schema=schema or {},
            example=param.get("example"),
        ))

    body = operation.get("requestBody")
    if isinstance(body, dict) and isinstance(body.get("content"), dict) and body["content"]:
        content_type, media = next(iter(body["content"].items()))
        media = media or {}
        body_schema = media.get("schema")
        body_example = media.get("example")

    responses = {
        str(code): (resp or {}).get("description", "")
        for code, resp in (operation.get("responses") or {}).items()
    }

    return EndpointInfo(
        path=path,
        method=method.upper(),
        summary=operation.get("summary", ""),
        parameters=parameters,
        content_type=content_type,
        body_schema=body_schema,
        body_example=body_example,
        responses=responses,
    )


STRING_FORMAT_EXAMPLES = {
    "date-time": "2024-01-01T12:00:00Z",
    "date": "2024-01-01",
    "email": "user@example.com",
    "uuid": "123e4567-e89b-12d3-a456-426614174000",
}


def example_value(schema: dict[str, Any] | None, depth: int = 0) -> Any:
    """Produce a plausible example value for a JSON schema."""
    if not schema or depth > 5:
        return {}
    if "example" in schema:
        return schema["example"]
    if schema.get("enum"):
        return schema["enum"][0]

    kind = schema.get("type")
    if kind == "object" or (kind is None and "properties" in schema):
        properties = schema.get("properties") or {}
        required = schema.get("required") or []
        names = sorted(properties)
        if required:
            names = [n for n in names if n in required]
        return {name: example_value(properties[name], depth + 1) for name in names[:10]}
    if kind == "array":
        return [example_value(schema.get("items"), depth + 1)]
    if kind == "string":
        return STRING_FORMAT_EXAMPLES.get(schema.get("format", ""), "example")
    if kind == "integer":
        return 42
    if kind == "number":
        return 3.14 if schema.get("format") in ("float", "double") else 42
    if kind == "boolean":
        return True
    if kind == "null":
        return None
    return {}


def generate_example_request(endpoint: EndpointInfo, server_url: str, auth: AuthConfig) -> HTTPRequest:
    """Build a ready-to-send request for an endpoint from its description."""
    url = server_url.rstrip("/") + endpoint.path
    headers = auth_headers(auth)
    query = []

    for param in endpoint.parameters:
        example = param.example
        if example is None:
            example = example_value(param.param_schema) if param.param_schema else "placeholder"
        value = str(example)
        if param.location == "path":
            url = url.replace("{" + param.name + "}", value)
        elif param.location == "query":
            query.append((param.name, value))
        elif param.location == "header":
            headers.append(KV(key=param.name, value=value))

    if query:
        url += "?" + urlencode(query)

    body = ""
    if endpoint.content_type is not None:
        example = endpoint.body_example
        if example is None:
            example = example_value(endpoint.body_schema)
        body = example if isinstance(example, str) else json.dumps(example)
        headers.append(KV(key="Content-Type", value=endpoint.content_type))

    return HTTPRequest(url=url, method=endpoint.method, body=body, headers=tuple(headers))


def load_endpoints(source: HTTPSourceRequest, timeout: float | None = None) -> list[EndpointInfo]:
    """Fetch and parse the API description of a source."""
    logger.debug("loading API description (%s)", source.spec_source)
    return parse_spec(fetch_spec(source.spec_source, source.spec_data, timeout))
