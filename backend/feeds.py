import csv
import io
import logging
from typing import Any, Dict, List, Optional

import httpx

from errors import ImportFetchError
from schemas import ImportSourceType
from settings import IMPORT_MAX_PAGES, IMPORT_PER_PAGE

logger = logging.getLogger(__name__)

ENDPOINTS = {
    ImportSourceType.CHECKINS.value: "checkins",
    ImportSourceType.PARTICIPANTS.value: "participants",
    ImportSourceType.BUYERS.value: "buyers",
}
ITEM_KEYS = ("data", "participants", "tickets", "checkins", "buyers")


def sheet_csv_url(url: str) -> str:
    url = url.strip()
    if "/edit" in url:
        return url.split("/edit")[0] + "/export?format=csv"
    return url


def auth_headers(token: Optional[str]) -> Dict[str, str]:
    headers = {"Accept": "application/json"}
    if token and token.strip():
        token = token.strip()
        headers["Authorization"] = token if token.startswith("Bearer ") else f"Bearer {token}"
    return headers


def parse_csv(text: str) -> List[Dict[str, str]]:
    """Parse a CSV export with a header row; header names are trimmed and lowercased."""
    reader = csv.DictReader(io.StringIO(text.lstrip("\ufeff")))
    rows = []
    for row in reader:
        cleaned = {
            (key or "").strip().lower(): (value or "").strip()
            for key, value in row.items()
            if isinstance(value, str) or value is None
        }
        if any(cleaned.values()):
            rows.append(cleaned)
    return rows


def extract_items(payload: Any) -> List[Any]:
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in ITEM_KEYS:
            value = payload.get(key)
            if isinstance(value, list):
                return value
        return []
    raise ValueError(f"unexpected payload type {type(payload).__name__}")


def last_page_of(payload: Any) -> int:
    if not isinstance(payload, dict):
        return 0
    value = payload.get("last_page")
    if value is None and isinstance(payload.get("meta"), dict):
        value = payload["meta"].get("last_page")
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


async def _get(client: httpx.AsyncClient, source, url: str, **kwargs) -> httpx.Response:
    try:
        response = await client.get(url, **kwargs)
    except httpx.HTTPError as exc:
        raise ImportFetchError(source.name, f"request failed: {exc}") from exc
    if not response.is_success:
        raise ImportFetchError(source.name, f"HTTP {response.status_code} from {url}")
    return response


async def fetch_sheet(client: httpx.AsyncClient, source) -> List[Dict[str, str]]:
    response = await _get(client, source, sheet_csv_url(source.url))
    return parse_csv(response.text)


async def fetch_api(
    client: httpx.AsyncClient,
    source,
    per_page: int = IMPORT_PER_PAGE,
    max_pages: int = IMPORT_MAX_PAGES,
) -> List[Any]:
    endpoint = ENDPOINTS.get(source.type, "tickets")
    url = f"{source.url.strip().rstrip('/')}/{endpoint}"
    headers = auth_headers(source.token)

    items: List[Any] = []
    page = 1
    while page <= max_pages:
        params = {"page": page, "per_page": per_page}
        if source.external_event_id:
            params["event_id"] = source.external_event_id
        response = await _get(client, source, url, params=params, headers=headers)
        try:
            payload = response.json()
            page_items = extract_items(payload)
        except ValueError as exc:
            raise ImportFetchError(source.name, f"malformed payload on page {page}: {exc}") from exc
        if not page_items:
            break
        items.extend(page_items)
        last_page = last_page_of(payload)
        if last_page and page >= last_page:
            break
        page += 1
    else:
        logger.warning("source %s hit the %d page cap", source.name, max_pages)
    return items


async def fetch_records(client: httpx.AsyncClient, source, **kwargs) -> List[Any]:
    if source.type == ImportSourceType.GOOGLE_SHEETS.value:
        return await fetch_sheet(client, source)
    return await fetch_api(client, source, **kwargs)
