"""Gmail REST source: threads are candidates, labels are markers."""
import base64
import logging
import re
from typing import Any, Iterable, Optional, Sequence

import httpx
from selectolax.parser import HTMLParser

from salesmail.config import config
from salesmail.errors import SourceUnavailable
from salesmail.parse.models import Candidate
from salesmail.source.base import MessageSource

logger = logging.getLogger(__name__)

GMAIL_API = "https://gmail.googleapis.com/gmail/v1"
BATCH_MODIFY_LIMIT = 1000
LIST_PAGE_LIMIT = 100

_CHARSET = re.compile(r'charset="?([\w.-]+)"?', re.IGNORECASE)


def decode_base64url(data: str) -> bytes:
    """Decode base64url with padding handling."""
    missing_padding = len(data) % 4
    if missing_padding:
        data += "=" * (4 - missing_padding)
    return base64.urlsafe_b64decode(data)


def html_to_text(html_content: str) -> str:
    """Visible text of an HTML body, one block per line."""
    parser = HTMLParser(html_content)
    for node in parser.css("script, style"):
        node.decompose()
    root = parser.body or parser.root
    return root.text(separator="\n", strip=True) if root else ""


def _header(part: dict, name: str) -> Optional[str]:
    for header in part.get("headers", []):
        if header.get("name", "").lower() == name.lower():
            return header.get("value")
    return None


def _part_text(part: dict, message_id: Optional[str] = None) -> Optional[str]:
    data = part.get("body", {}).get("data")
    if not data:
        return None
    try:
        raw = decode_base64url(data)
    except ValueError as e:
        # binascii.Error is a ValueError
        logger.warning(f"Message {message_id}: skipping undecodable {part.get('mimeType')} part: {e}")
        return None
    content_type = _header(part, "Content-Type") or ""
    match = _CHARSET.search(content_type)
    charset = match.group(1) if match else "utf-8"
    try:
        return raw.decode(charset, errors="replace")
    except LookupError:
        return raw.decode("utf-8", errors="replace")


def _walk_parts(part: dict) -> Iterable[dict]:
    yield part
    for child in part.get("parts", []) or []:
        yield from _walk_parts(child)


def extract_message_body(payload: dict, message_id: Optional[str] = None) -> Optional[str]:
    """Plain-text body of a message payload; HTML is converted when no text part exists."""
    plain, html = [], []
    for part in _walk_parts(payload):
        mime_type = part.get("mimeType", "")
        if mime_type == "text/plain":
            text = _part_text(part, message_id)
            if text:
                plain.append(text)
        elif mime_type == "text/html":
            text = _part_text(part, message_id)
            if text:
                html.append(text)
    if plain:
        return "\n".join(plain)
    if html:
        return "\n".join(html_to_text(h) for h in html)
    return None


def build_query(base_query: str, exclude_markers: Iterable[str] = (), require_marker: Optional[str] = None) -> str:
    parts = [base_query.strip()] if base_query and base_query.strip() else []
    parts.extend(f"-label:{marker}" for marker in exclude_markers)
    if require_marker:
        parts.append(f"label:{require_marker}")
    return " ".join(parts)


class GmailSource(MessageSource):
    """Reads notification threads from a Gmail mailbox."""

    def __init__(
        self,
        query: Optional[str] = None,
        access_token: Optional[str] = None,
        user: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.query = query if query is not None else config.SEARCH_QUERY
        self.user = user or config.GMAIL_USER
        token = access_token if access_token is not None else config.GMAIL_ACCESS_TOKEN
        self.client = client or httpx.AsyncClient(
            base_url=GMAIL_API,
            timeout=config.TIMEOUT,
            headers={"Authorization": f"Bearer {token}"},
        )
        self._label_ids: Optional[dict[str, str]] = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self) -> None:
        await self.client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict:
        url = f"/users/{self.user}{path}"
        try:
            response = await self.client.request(method, url, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise SourceUnavailable(
                f"Gmail {method} {path} returned {e.response.status_code}",
                {"status_code": e.response.status_code},
            ) from e
        except httpx.HTTPError as e:
            raise SourceUnavailable(f"Gmail {method} {path} failed: {e}") from e
        if not response.content:
            return {}
        return response.json()

    async def _labels(self) -> dict[str, str]:
        """Label name -> id, loaded once."""
        if self._label_ids is None:
            data = await self._request("GET", "/labels")
            self._label_ids = {label["name"]: label["id"] for label in data.get("labels", [])}
        return self._label_ids

    async def _label_id(self, name: str, create: bool) -> Optional[str]:
        labels = await self._labels()
        if name not in labels and create:
            created = await self._request("POST", "/labels", json={"name": name})
            labels[name] = created["id"]
            logger.info(f"Created Gmail label {name}")
        return labels.get(name)

    async def probe(self) -> None:
        await self._request("GET", "/threads", params={"q": self.query, "maxResults": 1})

    async def _list_thread_ids(self, query: str, limit: int) -> list[str]:
        thread_ids: list[str] = []
        page_token = None
        while len(thread_ids) < limit:
            params = {"q": query, "maxResults": min(LIST_PAGE_LIMIT, limit - len(thread_ids))}
            if page_token:
                params["pageToken"] = page_token
            data = await self._request("GET", "/threads", params=params)
            thread_ids.extend(thread["id"] for thread in data.get("threads", []))
            page_token = data.get("nextPageToken")
            if not page_token:
                break
        return thread_ids[:limit]

    async def _load_candidate(
        self,
        thread_id: str,
        exclude_markers: Iterable[str] = (),
        require_marker: Optional[str] = None,
    ) -> Optional[Candidate]:
        """
        Thread restricted to the messages the query asked for.

        Labels live on messages, so a thread search also returns threads where
        only some messages match. Markers, bodies and message ids are taken from
        the matching messages only; None when no message matches.
        """
        thread = await self._request("GET", f"/threads/{thread_id}", params={"format": "full"})
        labels = await self._labels()
        names_by_id = {label_id: name for name, label_id in labels.items()}
        excluded = set(exclude_markers)
        bodies, message_ids, markers = [], [], set()
        for message in thread.get("messages", []):
            message_markers = {names_by_id.get(label_id, label_id) for label_id in message.get("labelIds", [])}
            if excluded & message_markers:
                continue
            if require_marker and require_marker not in message_markers:
                continue
            message_ids.append(message["id"])
            markers.update(message_markers)
            body = extract_message_body(message.get("payload", {}), message_id=message["id"])
            if body:
                bodies.append(body)
        if not message_ids:
            logger.debug(f"Thread {thread_id} has no matching messages")
            return None
        return Candidate(id=thread_id, bodies=bodies, markers=markers, message_ids=message_ids)

    async def fetch(
        self,
        limit: int,
        exclude_markers: Iterable[str] = (),
        require_marker: Optional[str] = None,
    ) -> list[Candidate]:
        exclude_markers = tuple(exclude_markers)
        query = build_query(self.query, exclude_markers, require_marker)
        thread_ids = await self._list_thread_ids(query, limit)
        logger.debug(f"Query {query!r} returned {len(thread_ids)} threads")
        candidates = []
        for thread_id in thread_ids:
            candidate = await self._load_candidate(thread_id, exclude_markers, require_marker)
            if candidate is not None:
                candidates.append(candidate)
        return candidates

    async def _batch_modify(self, candidates: Sequence[Candidate], add: list[str], remove: list[str]) -> None:
        message_ids = [mid for candidate in candidates for mid in candidate.message_ids]
        for i in range(0, len(message_ids), BATCH_MODIFY_LIMIT):
            await self._request(
                "POST",
                "/messages/batchModify",
                json={
                    "ids": message_ids[i : i + BATCH_MODIFY_LIMIT],
                    "addLabelIds": add,
                    "removeLabelIds": remove,
                },
            )

    async def add_marker(self, candidates: Sequence[Candidate], marker: str) -> None:
        if not candidates:
            return
        label_id = await self._label_id(marker, create=True)
        await self._batch_modify(candidates, add=[label_id], remove=[])
        for candidate in candidates:
            candidate.markers.add(marker)

    async def remove_marker(self, candidates: Sequence[Candidate], marker: str) -> None:
        if not candidates:
            return
        label_id = await self._label_id(marker, create=False)
        if label_id is not None:
            await self._batch_modify(candidates, add=[], remove=[label_id])
        for candidate in candidates:
            candidate.markers.discard(marker)
