"""
Tests for the Plant.id and OpenAI vision identification adapters.
"""
import base64
import json

import httpx
import pytest

from models.diagnosis_models import PlantCandidate
from services.diagnosis.errors import IdentificationError
from services.diagnosis.plant_identifier import PlantIdIdentifier, resolve_plant_name
from services.diagnosis.vision_identifier import VisionPlantIdentifier
from tests.fakes import make_openai_client

DATA_URL = "data:image/jpeg;base64," + base64.b64encode(b"\xff\xd8\xff leaf").decode("ascii")

PLANT_ID_PAYLOAD = {
    "result": {
        "is_plant": {"binary": True, "probability": 0.99},
        "classification": {
            "suggestions": [
                {
                    "name": "Solanum lycopersicum",
                    "probability": 0.95,
                    "details": {"common_names": ["Cà chua", "Tomato"]},
                }
            ]
        },
        "is_healthy": {"binary": False, "probability": 0.08},
        "disease": {
            "suggestions": [
                {"name": "Đốm lá", "probability": 0.92, "details": {"description": "Vết đốm nâu"}},
                {"name": "Mốc sương", "probability": 0.31},
                {"name": "Thối rễ", "probability": 0.12},
                {"name": "Héo xanh", "probability": 0.07},
                {"name": "Phấn trắng", "probability": 0.01},
            ]
        },
    }
}


def _identifier(handler, **kwargs):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return PlantIdIdentifier(client, api_key="secret", base_url="https://plant.id/api/v3", **kwargs)


class TestPlantIdIdentifier:
    @pytest.mark.asyncio
    async def test_identifies_plant_and_diseases(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["api_key"] = request.headers.get("Api-Key")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=PLANT_ID_PAYLOAD)

        result = await _identifier(handler).identify(DATA_URL)

        assert result.plant == PlantCandidate("Cà chua", "Solanum lycopersicum", 0.95)
        assert [finding.name for finding in result.diseases] == ["Đốm lá", "Mốc sương", "Thối rễ"]
        assert result.diseases[0].description == "Vết đốm nâu"
        assert seen["url"].startswith("https://plant.id/api/v3/identification")
        assert seen["api_key"] == "secret"
        assert seen["body"]["images"] == [DATA_URL]
        assert seen["body"]["health"] == "all"

    @pytest.mark.asyncio
    async def test_min_confidence_filters_diseases(self):
        result = await _identifier(lambda request: httpx.Response(200, json=PLANT_ID_PAYLOAD), disease_min_confidence=0.2).identify(DATA_URL)

        assert [finding.name for finding in result.diseases] == ["Đốm lá", "Mốc sương"]

    @pytest.mark.asyncio
    async def test_healthy_plant_has_no_findings(self):
        payload = json.loads(json.dumps(PLANT_ID_PAYLOAD))
        payload["result"]["is_healthy"]["binary"] = True

        result = await _identifier(lambda request: httpx.Response(200, json=payload)).identify(DATA_URL)

        assert result.plant is not None
        assert result.diseases == []

    @pytest.mark.asyncio
    async def test_not_a_plant_has_no_candidate(self):
        payload = {"result": {"is_plant": {"binary": False}, "classification": {"suggestions": []}}}

        result = await _identifier(lambda request: httpx.Response(200, json=payload)).identify(DATA_URL)

        assert result.plant is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status, message", [(401, "Invalid Plant.id API key"), (429, "rate limit"), (503, "status 503")])
    async def test_http_errors_are_descriptive(self, status, message):
        identifier = _identifier(lambda request: httpx.Response(status, json={}))

        with pytest.raises(IdentificationError, match=message):
            await identifier.identify(DATA_URL)

    @pytest.mark.asyncio
    async def test_remote_image_is_sent_as_data_url(self):
        posted = {}

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "GET":
                return httpx.Response(200, content=b"PNGDATA", headers={"content-type": "image/png"})
            posted["images"] = json.loads(request.content)["images"]
            return httpx.Response(200, json=PLANT_ID_PAYLOAD)

        await _identifier(handler).identify("https://cdn.example.com/leaf.png")

        assert posted["images"] == ["data:image/png;base64," + base64.b64encode(b"PNGDATA").decode("ascii")]

    @pytest.mark.asyncio
    async def test_uppercase_data_url_is_not_fetched(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request.method)
            return httpx.Response(200, json=PLANT_ID_PAYLOAD)

        upper = "DATA:IMAGE/JPEG;base64," + DATA_URL.split(",", 1)[1]
        result = await _identifier(handler).identify(upper)

        assert requests == ["POST"]
        assert result.plant is not None

    @pytest.mark.asyncio
    async def test_remote_non_image_is_rejected(self):
        identifier = _identifier(lambda request: httpx.Response(200, text="<html></html>", headers={"content-type": "text/html"}))

        with pytest.raises(IdentificationError):
            await identifier.identify("https://example.com/page")

    def test_requires_api_key(self):
        with pytest.raises(ValueError):
            PlantIdIdentifier(httpx.AsyncClient(), api_key="")


class TestVisionPlantIdentifier:
    @pytest.mark.asyncio
    async def test_parses_function_call(self):
        client = make_openai_client(
            {
                "is_plant": True,
                "common_name": "Cà chua",
                "scientific_name": "Solanum lycopersicum",
                "confidence": 0.9,
                "diseases": [
                    {"name": "Mốc sương", "confidence": 0.3, "description": ""},
                    {"name": "Đốm lá", "confidence": 0.8, "description": "Vết đốm nâu"},
                    {"name": "Khảm lá", "confidence": 0.01, "description": ""},
                ],
            }
        )

        result = await VisionPlantIdentifier(client).identify(DATA_URL)

        assert result.plant.common_name == "Cà chua"
        assert [finding.name for finding in result.diseases] == ["Đốm lá", "Mốc sương"]
        image_part = client.responses.calls[0]["input"][2]["content"][0]
        assert image_part == {"type": "input_image", "image_url": DATA_URL}

    @pytest.mark.asyncio
    async def test_not_a_plant(self):
        client = make_openai_client(
            {"is_plant": False, "common_name": "", "scientific_name": "", "confidence": 0.0, "diseases": []}
        )

        result = await VisionPlantIdentifier(client).identify(DATA_URL)

        assert result.plant is None

    @pytest.mark.asyncio
    async def test_upstream_failure_raises_identification_error(self):
        client = make_openai_client(error=RuntimeError("model overloaded"))

        with pytest.raises(IdentificationError):
            await VisionPlantIdentifier(client).identify(DATA_URL)


class TestResolvePlantName:
    def test_prefers_common_name(self):
        assert resolve_plant_name(PlantCandidate("Cà chua", "Solanum lycopersicum")) == "Cà chua"
        assert resolve_plant_name(PlantCandidate("", "Solanum lycopersicum")) == "Solanum lycopersicum"
        assert resolve_plant_name(None) is None
