"""
Tests for CompletionClient.

HTTP is replaced with a fake aiohttp session so no network is used.
"""

import aiohttp
import pytest

from rag_relay.errors import CompletionError
from rag_relay.llm.openai_client import CompletionClient, _extract_answer


class FakeResponse:
    def __init__(self, status=200, payload=None, text=""):
        self.status = status
        self._payload = payload
        self._text = text

    async def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload

    async def text(self):
        return self._text

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeHTTPSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.requests = []
        self.closed = False

    def post(self, url, headers=None, json=None):
        self.requests.append({"url": url, "headers": headers, "json": json})
        if self.error:
            raise self.error
        return self.response

    async def close(self):
        self.closed = True


def completion_payload(content):
    return {
        "choices": [{"message": {"role": "assistant", "content": content}}],
        "usage": {"prompt_tokens": 120, "completion_tokens": 12},
    }


def make_client(session, **kwargs):
    client = CompletionClient(api_key="sk-test", **kwargs)
    client._session = session
    return client


class TestExtractAnswer:

    def test_first_choice_content(self):
        assert _extract_answer(completion_payload("  Hello.  ")) == "Hello."

    @pytest.mark.parametrize("data", [
        None,
        [],
        {},
        {"choices": []},
        {"choices": [{"message": {}}]},
        {"choices": [{"message": {"content": "   "}}]},
    ])
    def test_unusable_payloads(self, data):
        with pytest.raises(CompletionError):
            _extract_answer(data)


class TestComplete:

    @pytest.mark.asyncio
    async def test_request_shape_and_answer(self):
        session = FakeHTTPSession(FakeResponse(payload=completion_payload("25 days.")))
        client = make_client(session, model="gpt-4o-mini", organization_id="org-1", project_id="proj-1")

        answer = await client.complete(system="ctx", user="How much vacation?", max_output_tokens=200, temperature=0.7)

        assert answer == "25 days."
        request = session.requests[0]
        assert request["json"] == {
            "model": "gpt-4o-mini",
            "messages": [
                {"role": "system", "content": "ctx"},
                {"role": "user", "content": "How much vacation?"},
            ],
            "max_tokens": 200,
            "temperature": 0.7,
        }
        assert request["headers"]["Authorization"] == "Bearer sk-test"
        assert request["headers"]["OpenAI-Organization"] == "org-1"
        assert request["headers"]["OpenAI-Project"] == "proj-1"

    @pytest.mark.asyncio
    async def test_non_200_raises(self):
        session = FakeHTTPSession(FakeResponse(status=500, text="server error"))
        client = make_client(session)

        with pytest.raises(CompletionError, match="500"):
            await client.complete(system="s", user="u")

    @pytest.mark.asyncio
    async def test_network_error_raises(self):
        session = FakeHTTPSession(error=aiohttp.ClientConnectionError("reset"))
        client = make_client(session)

        with pytest.raises(CompletionError):
            await client.complete(system="s", user="u")

    @pytest.mark.asyncio
    async def test_invalid_json_raises(self):
        session = FakeHTTPSession(FakeResponse(payload=ValueError("not json")))
        client = make_client(session)

        with pytest.raises(CompletionError):
            await client.complete(system="s", user="u")

    @pytest.mark.asyncio
    async def test_empty_choices_raises(self):
        session = FakeHTTPSession(FakeResponse(payload={"choices": []}))
        client = make_client(session)

        with pytest.raises(CompletionError):
            await client.complete(system="s", user="u")

    @pytest.mark.asyncio
    async def test_close(self):
        session = FakeHTTPSession()
        client = make_client(session)

        await client.close()

        assert session.closed
