import json

import httpx
import pytest

from safetysecretary.domain.errors import ExtractionError
from safetysecretary.services.extraction import ExtractionClient


def completion(content):
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


def client_answering(handler):
    return ExtractionClient(
        api_key="sk-test",
        base_url="https://llm.example/v1/",
        model="test-model",
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_request_shape_and_normalized_answer():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=completion(json.dumps({"suggestions": [{
            "hazardId": "h1",
            "controls": ["Install interlock", ""],
            "hierarchy": "technical",
            "residualSeverity": "Major",
            "residualLikelihood": 2,
        }]})))

    client = client_answering(handler)
    result = await client.suggest_controls("notes", [{"id": "h1", "label": "Pinch point"}])
    await client.close()

    assert seen["url"] == "https://llm.example/v1/chat/completions"
    assert seen["auth"] == "Bearer sk-test"
    assert seen["body"]["model"] == "test-model"
    assert seen["body"]["temperature"] == 0
    assert seen["body"]["response_format"] == {"type": "json_object"}
    assert [m["role"] for m in seen["body"]["messages"]] == ["system", "user"]
    assert json.loads(seen["body"]["messages"][1]["content"])["hazards"][0]["id"] == "h1"

    (suggestion,) = result.suggestions
    assert suggestion.controls == ["Install interlock"]
    assert suggestion.hierarchy == "TECHNICAL"
    assert suggestion.residual_severity == "C"
    assert suggestion.residual_likelihood == "2"


@pytest.mark.asyncio
async def test_plain_text_input_is_sent_verbatim():
    seen = {}

    def handler(request):
        seen["user"] = json.loads(request.content)["messages"][1]["content"]
        return httpx.Response(200, json=completion('{"steps": [{"activity": "Open valve"}]}'))

    client = client_answering(handler)
    result = await client.extract_steps("Open the valve.")

    assert seen["user"] == "Open the valve."
    assert result.steps[0].activity == "Open valve"
    assert result.steps[0].equipment == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response, message",
    [
        (httpx.Response(500, text="upstream down"), "HTTP 500"),
        (httpx.Response(200, text="<html>"), "non-JSON"),
        (httpx.Response(200, json={"choices": []}), "no message content"),
        (httpx.Response(200, json=completion("")), "empty answer"),
        (httpx.Response(200, json=completion("not json at all")), "malformed steps data"),
        (httpx.Response(200, json=completion('{"steps": [{"equipment": []}]}')), "malformed steps data"),
        (httpx.Response(200, json=completion('{"steps": [{"activity": "Lift", "equipment": 5}]}')), "malformed steps data"),
    ],
)
async def test_unusable_answers_raise_extraction_error(response, message):
    client = client_answering(lambda request: response)

    with pytest.raises(ExtractionError, match=message):
        await client.extract_steps("Open the valve.")


@pytest.mark.asyncio
async def test_transport_failure_raises_extraction_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = client_answering(handler)

    with pytest.raises(ExtractionError, match="unreachable"):
        await client.extract_jha_rows("Replace the belt.")


@pytest.mark.asyncio
async def test_offline_client_answers_from_heuristics():
    client = ExtractionClient(api_key=None)

    assert client.offline
    result = await client.extract_steps("Open the valve. Drain the tank.")
    assert [s.activity for s in result.steps] == ["Open the valve", "Drain the tank"]

    empty = await client.extract_steps("   ")
    assert [s.activity for s in empty.steps] == ["Describe activity"]
    await client.close()
