"""HTTP clients for public knowledge sources (arXiv, Wikipedia)."""

from datetime import UTC, datetime
from typing import Any
from xml.etree.ElementTree import Element

import httpx
from defusedxml import ElementTree

from chatstream.utils.logging import get_logger

logger = get_logger(__name__)

ARXIV_API_URL = "http://export.arxiv.org/api/query"
WIKIPEDIA_API_URL = "https://en.wikipedia.org/w/api.php"
ATOM_NS = {"atom": "http://www.w3.org/2005/Atom"}


def parse_published_after(time: str) -> datetime | None:
    """Parse a ``YYYY`` or ``YYYY-MM`` filter into a UTC start date."""
    if not time:
        return None
    if len(time) == 4:
        return datetime(int(time), 1, 1, tzinfo=UTC)
    if len(time) == 7:
        year, month = time.split("-")
        return datetime(int(year), int(month), 1, tzinfo=UTC)
    raise ValueError(f"Invalid time format: {time}")


def _text(entry: Element, tag: str) -> str:
    node = entry.find(f"atom:{tag}", ATOM_NS)
    return " ".join((node.text or "").split()) if node is not None else ""


def parse_arxiv_feed(xml: str) -> list[dict[str, Any]]:
    """Turn an arXiv Atom feed into plain dictionaries."""
    root = ElementTree.fromstring(xml)
    entries = []
    for entry in root.findall("atom:entry", ATOM_NS):
        links = [link.get("href", "") for link in entry.findall("atom:link", ATOM_NS)]
        entries.append(
            {
                "id": _text(entry, "id"),
                "title": _text(entry, "title"),
                "summary": _text(entry, "summary"),
                "published": _text(entry, "published"),
                "authors": [_text(author, "name") for author in entry.findall("atom:author", ATOM_NS)],
                "links": [link for link in links if link],
            }
        )
    return entries


class KnowledgeClient:
    """Thin async wrapper over the arXiv and Wikipedia public APIs."""

    def __init__(self, http_client: httpx.AsyncClient | None = None, timeout: float = 30.0):
        self.http = http_client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)

    async def search_arxiv(self, query: str, time: str = "") -> list[dict[str, Any]]:
        """Search arXiv, keeping only papers published on or after ``time``."""
        published_after = parse_published_after(time)
        params: dict[str, Any] = {"search_query": f"all:{query}"}
        if published_after:
            params.update({"start": 0, "max_results": 40, "sortBy": "submittedDate", "sortOrder": "descending"})

        logger.debug(f"Querying arXiv: {params}")
        response = await self.http.get(ARXIV_API_URL, params=params)
        response.raise_for_status()

        entries = parse_arxiv_feed(response.text)
        if published_after:
            entries = [
                entry
                for entry in entries
                if entry["published"] and datetime.fromisoformat(entry["published"].replace("Z", "+00:00")) >= published_after
            ]
        logger.info(f"arXiv returned {len(entries)} entries for '{query}'")
        return entries

    async def search_wikipedia(self, query: str) -> dict[str, Any]:
        """Find the best matching article and return its introduction."""
        response = await self.http.get(
            WIKIPEDIA_API_URL,
            params={"action": "query", "format": "json", "list": "search", "srsearch": query},
        )
        response.raise_for_status()
        results = response.json().get("query", {}).get("search", [])
        if not results:
            return {"query": query, "title": "", "content": ""}

        first = results[0]
        page_response = await self.http.get(
            WIKIPEDIA_API_URL,
            params={
                "action": "query",
                "format": "json",
                "prop": "extracts",
                "exintro": 1,
                "explaintext": 1,
                "pageids": first["pageid"],
            },
        )
        page_response.raise_for_status()
        page = page_response.json().get("query", {}).get("pages", {}).get(str(first["pageid"]), {})
        return {
            "query": query,
            "title": first.get("title", ""),
            "content": page.get("extract") or "No content found",
        }

    async def close(self) -> None:
        await self.http.aclose()


_knowledge_client: KnowledgeClient | None = None


def get_knowledge_client() -> KnowledgeClient:
    """Get or create knowledge client instance."""
    global _knowledge_client
    if _knowledge_client is None:
        _knowledge_client = KnowledgeClient()
    return _knowledge_client


async def close_knowledge_client() -> None:
    """Close the shared knowledge client if it was created."""
    global _knowledge_client
    if _knowledge_client is not None:
        await _knowledge_client.close()
        _knowledge_client = None
