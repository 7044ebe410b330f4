from types import SimpleNamespace

import httpx
import pytest

from errors import ImportFetchError
from feeds import (
    auth_headers,
    extract_items,
    fetch_api,
    fetch_records,
    last_page_of,
    parse_csv,
    sheet_csv_url,
)


def source(**overrides):
    fields = dict(name="Vendor", url="https://api.example.com/v1/", token="abc", type="tickets", external_event_id=None)
    fields.update(overrides)
    return SimpleNamespace(**fields)


def client_for(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestHelpers:

    def test_sheet_url_rewrite(self):
        url = "https://docs.google.com/spreadsheets/d/KEY/edit#gid=0"
        assert sheet_csv_url(url) == "https://docs.google.com/spreadsheets/d/KEY/export?format=csv"
        assert sheet_csv_url("https://example.com/file.csv") == "https://example.com/file.csv"

    def test_auth_headers(self):
        assert auth_headers("abc")["Authorization"] == "Bearer abc"
        assert auth_headers("Bearer xyz")["Authorization"] == "Bearer xyz"
        assert "Authorization" not in auth_headers("  ")

    def test_parse_csv(self):
        text = "\ufeffCodigo, Setor ,Nome\nA1,VIP,Ana\n,,\nB2,Pista,Bob\n"
        assert parse_csv(text) == [
            {"codigo": "A1", "setor": "VIP", "nome": "Ana"},
            {"codigo": "B2", "setor": "Pista", "nome": "Bob"},
        ]

    def test_extract_items(self):
        assert extract_items([{"code": "A"}]) == [{"code": "A"}]
        assert extract_items({"meta": {}, "participants": [1, 2]}) == [1, 2]
        assert extract_items({"message": "nothing"}) == []
        with pytest.raises(ValueError):
            extract_items("oops")

    def test_last_page(self):
        assert last_page_of({"last_page": 3}) == 3
        assert last_page_of({"meta": {"last_page": "2"}}) == 2
        assert last_page_of([]) == 0


@pytest.mark.asyncio
class TestFetchApi:

    async def test_pages_until_last_page(self):
        seen = []

        def handler(request):
            seen.append(request)
            page = int(request.url.params["page"])
            return httpx.Response(200, json={"data": [{"code": f"P{page}"}], "meta": {"last_page": 2}})

        async with client_for(handler) as client:
            items = await fetch_api(client, source(external_event_id="77"))

        assert items == [{"code": "P1"}, {"code": "P2"}]
        assert str(seen[0].url).startswith("https://api.example.com/v1/tickets?")
        assert seen[0].url.params["per_page"] == "100"
        assert seen[0].url.params["event_id"] == "77"
        assert seen[0].headers["Authorization"] == "Bearer abc"

    async def test_stops_on_empty_page(self):
        def handler(request):
            page = int(request.url.params["page"])
            return httpx.Response(200, json=[{"code": "A"}] if page == 1 else [])

        async with client_for(handler) as client:
            assert await fetch_api(client, source()) == [{"code": "A"}]

    async def test_page_cap(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json={"tickets": [{"code": str(len(calls))}]})

        async with client_for(handler) as client:
            items = await fetch_api(client, source(), max_pages=3)
        assert len(items) == 3
        assert len(calls) == 3

    async def test_endpoint_follows_source_type(self):
        paths = []

        def handler(request):
            paths.append(request.url.path)
            return httpx.Response(200, json=[])

        async with client_for(handler) as client:
            await fetch_api(client, source(type="checkins"))
        assert paths == ["/v1/checkins"]

    async def test_non_2xx_raises(self):
        async with client_for(lambda request: httpx.Response(401, json={"error": "no"})) as client:
            with pytest.raises(ImportFetchError) as exc:
                await fetch_api(client, source())
        assert exc.value.source_name == "Vendor"
        assert "401" in str(exc.value)

    async def test_malformed_payload_raises(self):
        async with client_for(lambda request: httpx.Response(200, text="<html>")) as client:
            with pytest.raises(ImportFetchError):
                await fetch_api(client, source())

    async def test_transport_error_raises(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        async with client_for(handler) as client:
            with pytest.raises(ImportFetchError):
                await fetch_api(client, source())

    async def test_sheet_source(self):
        def handler(request):
            assert request.url.path.endswith("/export")
            return httpx.Response(200, text="code,sector\nA1,VIP\n")

        sheet = source(type="google_sheets", url="https://docs.google.com/spreadsheets/d/KEY/edit")
        async with client_for(handler) as client:
            assert await fetch_records(client, sheet) == [{"code": "A1", "sector": "VIP"}]
