"""Unit tests for structured output helpers."""

from pydantic import BaseModel

from agentsdk.structured import ResponseFormat, extract_json_payload, find_json_object


class Weather(BaseModel):
    city: str
    celsius: float


class TestFindJsonObject:
    def test_nested(self):
        text = 'prefix {"a": {"b": 1}} suffix {"c": 2}'
        assert find_json_object(text) == '{"a": {"b": 1}}'

    def test_braces_in_strings_ignored(self):
        text = 'x {"s": "}{", "t": "\\"}"} y'
        assert find_json_object(text) == '{"s": "}{", "t": "\\"}"}'

    def test_unclosed(self):
        assert find_json_object("{ never closed") is None
        assert find_json_object("no braces") is None


class TestExtractJsonPayload:
    def test_payload(self):
        assert extract_json_payload('Result:\n{"city": "Oslo", "celsius": -3.5}') == {
            "city": "Oslo",
            "celsius": -3.5,
        }

    def test_invalid_json(self):
        assert extract_json_payload("{city: Oslo}") is None


class TestResponseFormat:
    def test_from_model(self):
        fmt = ResponseFormat.from_model(Weather)
        assert fmt.name == "Weather"
        assert fmt.type == "json_schema"
        assert set(fmt.schema["properties"]) == {"city", "celsius"}
