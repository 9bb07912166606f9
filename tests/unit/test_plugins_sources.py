"""
Unit tests for the http-source plugin.

Tests cover:
- Auth header generation
- URL joining and exploration
- OpenAPI 3 and Swagger 2 parsing
- Example request generation
- Fetching descriptions by URL (httpx mocked)
"""

import json
from unittest.mock import MagicMock, patch

import pytest

from apiary.plugins.http import HTTPRequest
from apiary.plugins.sources import (
    AuthConfig,
    EndpointInfo,
    HTTPSourceRequest,
    ParameterInfo,
    SQLSourceRequest,
    auth_headers,
    example_value,
    explore_http_source,
    fetch_spec,
    generate_example_request,
    join_url,
    load_endpoints,
    parse_spec,
)
from apiary.schema import KV

OPENAPI_YAML = """
openapi: 3.0.0
info:
  title: Pets
  version: "1.0"
paths:
  /pets/{petId}:
    parameters:
      - name: petId
        in: path
        required: true
        schema:
          type: integer
    get:
      summary: Get a pet
      parameters:
        - name: verbose
          in: query
          schema:
            type: boolean
      responses:
        "200":
          description: A pet
        "404":
          description: Not found
    delete:
      summary: Delete a pet
  /pets:
    post:
      summary: Create a pet
      requestBody:
        content:
          application/json:
            schema:
              type: object
              required: [name]
              properties:
                name:
                  type: string
                tag:
                  type: string
    get:
      summary: List pets
      parameters:
        - name: limit
          in: query
          example: 10
        - name: X-Request-Id
          in: header
          schema:
            type: string
            format: uuid
"""

SWAGGER_JSON = json.dumps({
    "swagger": "2.0",
    "info": {"title": "Store", "version": "1"},
    "consumes": ["application/json"],
    "paths": {
        "/orders": {
            "post": {
                "summary": "Place order",
                "parameters": [
                    {"name": "body", "in": "body", "schema": {"type": "object", "properties": {"qty": {"type": "integer"}}}},
                    {"name": "dry_run", "in": "query", "type": "boolean"},
                ],
                "responses": {"201": {"description": "Created"}},
            }
        }
    },
})


class TestAuthHeaders:
    """Tests for auth header generation."""

    def test_none(self) -> None:
        assert auth_headers(AuthConfig()) == []

    def test_basic(self) -> None:
        headers = auth_headers(AuthConfig(type="basic", username="user", password="pass"))
        assert headers == [KV(key="Authorization", value="Basic dXNlcjpwYXNz")]

    def test_basic_without_credentials(self) -> None:
        assert auth_headers(AuthConfig(type="basic")) == []

    def test_bearer(self) -> None:
        assert auth_headers(AuthConfig(type="bearer", token="t0k")) == [KV(key="Authorization", value="Bearer t0k")]

    def test_apikey(self) -> None:
        auth = AuthConfig.model_validate({"type": "apikey", "keyName": "X-Api-Key", "keyValue": "secret"})
        assert auth_headers(auth) == [KV(key="X-Api-Key", value="secret")]

    def test_oauth_adds_nothing(self) -> None:
        assert auth_headers(AuthConfig(type="oauth", token="t")) == []


class TestExploreHttpSource:
    """Tests for building requests from a source."""

    @pytest.mark.parametrize(
        ("server", "url", "expected"),
        [
            ("https://api.example.com", "/pets", "https://api.example.com/pets"),
            ("https://api.example.com/", "pets", "https://api.example.com/pets"),
            ("https://api.example.com/v1", "", "https://api.example.com/v1"),
            ("https://api.example.com", "https://other.example.com/x", "https://other.example.com/x"),
        ],
    )
    def test_join_url(self, server: str, url: str, expected: str) -> None:
        assert join_url(server, url) == expected

    def test_adds_auth(self) -> None:
        source = HTTPSourceRequest(server_url="https://api.example.com", auth=AuthConfig(type="bearer", token="abc"))
        request = explore_http_source(source, {"url": "/pets", "method": "GET"})
        assert request == HTTPRequest(
            url="https://api.example.com/pets",
            method="GET",
            headers=(KV(key="Authorization", value="Bearer abc"),),
        )

    def test_own_auth_header_wins(self) -> None:
        source = HTTPSourceRequest(server_url="https://api.example.com", auth=AuthConfig(type="bearer", token="abc"))
        own = KV(key="authorization", value="Bearer mine")
        request = explore_http_source(source, HTTPRequest(url="/pets", headers=(own,)))
        assert request.headers == (own,)

    def test_invalid_request(self) -> None:
        with pytest.raises(ValueError):
            explore_http_source(HTTPSourceRequest(), {"url": 5})

    def test_wrong_source(self) -> None:
        with pytest.raises(TypeError):
            explore_http_source(SQLSourceRequest(), HTTPRequest())


class TestParseSpec:
    """Tests for reading API descriptions."""

    def test_openapi3(self) -> None:
        endpoints = parse_spec(OPENAPI_YAML)
        assert [(e.method, e.path) for e in endpoints] == [
            ("GET", "/pets"),
            ("POST", "/pets"),
            ("GET", "/pets/{petId}"),
            ("DELETE", "/pets/{petId}"),
        ]

        get_pet = endpoints[2]
        assert get_pet.summary == "Get a pet"
        assert [(p.name, p.location) for p in get_pet.parameters] == [("petId", "path"), ("verbose", "query")]
        assert get_pet.parameters[0].required
        assert get_pet.responses == {"200": "A pet", "404": "Not found"}

        create = endpoints[1]
        assert create.content_type == "application/json"
        assert create.body_schema["required"] == ["name"]

    def test_swagger2(self) -> None:
        endpoints = parse_spec(SWAGGER_JSON)
        assert len(endpoints) == 1
        order = endpoints[0]
        assert order.method == "POST"
        assert order.content_type == "application/json"
        assert order.body_schema == {"type": "object", "properties": {"qty": {"type": "integer"}}}
        assert order.parameters == [
            ParameterInfo(name="dry_run", location="query", param_schema={"type": "boolean"}),
        ]
        assert order.responses == {"201": "Created"}

    @pytest.mark.parametrize("text", ["", "[1, 2]", "info: {}", "{not: [valid"])
    def test_invalid(self, text: str) -> None:
        with pytest.raises(ValueError):
            parse_spec(text)

    def test_endpoint_dump_uses_aliases(self) -> None:
        param = parse_spec(OPENAPI_YAML)[2].parameters[0]
        dumped = param.model_dump(by_alias=True)
        assert dumped["in"] == "path"
        assert dumped["schema"] == {"type": "integer"}


class TestExamples:
    """Tests for example values and requests."""

    @pytest.mark.parametrize(
        ("schema", "expected"),
        [
            ({"type": "string"}, "example"),
            ({"type": "string", "format": "email"}, "user@example.com"),
            ({"type": "integer"}, 42),
            ({"type": "number", "format": "double"}, 3.14),
            ({"type": "boolean"}, True),
            ({"type": "array", "items": {"type": "integer"}}, [42]),
            ({"enum": ["a", "b"]}, "a"),
            ({"type": "string", "example": "given"}, "given"),
            (None, {}),
        ],
    )
    def test_example_value(self, schema: dict | None, expected: object) -> None:
        assert example_value(schema) == expected

    def test_object_uses_required_properties(self) -> None:
        schema = {
            "type": "object",
            "required": ["name"],
            "properties": {"name": {"type": "string"}, "tag": {"type": "string"}},
        }
        assert example_value(schema) == {"name": "example"}

    def test_recursion_is_bounded(self) -> None:
        schema: dict = {"type": "object", "properties": {}}
        schema["properties"]["child"] = schema
        value = example_value(schema)
        depth = 0
        while value:
            value = value["child"]
            depth += 1
        assert depth <= 6

    def test_generate_get(self) -> None:
        endpoint = parse_spec(OPENAPI_YAML)[2]
        request = generate_example_request(endpoint, "https://api.example.com/", AuthConfig(type="bearer", token="t"))
        assert request == HTTPRequest(
            url="https://api.example.com/pets/42?verbose=True",
            method="GET",
            headers=(KV(key="Authorization", value="Bearer t"),),
        )

    def test_generate_with_body_and_header(self) -> None:
        endpoints = parse_spec(OPENAPI_YAML)
        post = generate_example_request(endpoints[1], "https://api.example.com", AuthConfig())
        assert post.method == "POST"
        assert json.loads(post.body) == {"name": "example"}
        assert KV(key="Content-Type", value="application/json") in post.headers

        listing = generate_example_request(endpoints[0], "https://api.example.com", AuthConfig())
        assert listing.url == "https://api.example.com/pets?limit=10"
        assert KV(key="X-Request-Id", value="123e4567-e89b-12d3-a456-426614174000") in listing.headers

    def test_string_body_example_sent_as_is(self) -> None:
        endpoint = EndpointInfo(path="/raw", method="PUT", content_type="text/plain", body_example="hello")
        request = generate_example_request(endpoint, "https://api.example.com", AuthConfig())
        assert request.body == "hello"


class TestFetchSpec:
    """Tests for loading descriptions."""

    def test_file_source_returns_data(self) -> None:
        assert fetch_spec("file", OPENAPI_YAML) == OPENAPI_YAML

    def test_unknown_source(self) -> None:
        with pytest.raises(ValueError, match="unknown spec source"):
            fetch_spec("ftp", "x")

    def test_url_source(self) -> None:
        with patch("httpx.Client") as mock_client:
            mock_response = MagicMock()
            mock_response.status_code = 200
            mock_response.text = SWAGGER_JSON

            mock_client_instance = MagicMock()
            mock_client_instance.get.return_value = mock_response
            mock_client_instance.__enter__ = MagicMock(return_value=mock_client_instance)
            mock_client_instance.__exit__ = MagicMock(return_value=False)
            mock_client.return_value = mock_client_instance

            source = HTTPSourceRequest(spec_source="url", spec_data="https://api.example.com/swagger.json")
            endpoints = load_endpoints(source, timeout=5.0)

        assert [e.path for e in endpoints] == ["/orders"]
        mock_client_instance.get.assert_called_once_with("https://api.example.com/swagger.json")

    def test_url_source_bad_status(self) -> None:
        with patch("httpx.Client") as mock_client:
            mock_response = MagicMock()
            mock_response.status_code = 404

            mock_client_instance = MagicMock()
            mock_client_instance.get.return_value = mock_response
            mock_client_instance.__enter__ = MagicMock(return_value=mock_client_instance)
            mock_client_instance.__exit__ = MagicMock(return_value=False)
            mock_client.return_value = mock_client_instance

            with pytest.raises(ValueError, match="404"):
                fetch_spec("url", "https://api.example.com/missing.json")
