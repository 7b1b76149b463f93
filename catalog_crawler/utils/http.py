from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Dict, Optional

import aiohttp
from aiohttp import ClientSession, ClientTimeout
import logging

from ..errors import FetchError
from ..models import Request

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FetchedPage:
    url: str
    status: int
    body: bytes
    content_type: str = ""

    @property
    def is_json(self) -> bool:
        return "json" in self.content_type.lower()


class AiohttpFetcher:
    """
    Single-attempt fetcher. Retrying is the engine's job, so every failure is
    surfaced as FetchError.
    """

    def __init__(
        self,
        session: ClientSession,
        *,
        timeout: float = 15.0,
        user_agent: Optional[str] = None,
    ) -> None:
        self.session = session
        self.timeout = timeout
        self.user_agent = user_agent

    async def __call__(self, request: Request) -> FetchedPage:
        headers: Dict[str, str] = {}
        if self.user_agent:
            headers["User-Agent"] = self.user_agent
        headers.update(request.headers)

        try:
            async with self.session.get(
                request.url, headers=headers, timeout=ClientTimeout(total=self.timeout)
            ) as resp:
                body = await resp.read()
                if resp.status >= 400:
                    raise FetchError(request.url, resp.reason or "bad status", status=resp.status)
                return FetchedPage(
                    url=str(resp.url),
                    status=resp.status,
                    body=body,
                    content_type=resp.headers.get("Content-Type", ""),
                )
        except asyncio.TimeoutError as exc:
            raise FetchError(request.url, "timed out") from exc
        except aiohttp.ClientError as exc:
            raise FetchError(request.url, repr(exc)) from exc


def create_session() -> ClientSession:
    """
    Create a shared aiohttp ClientSession.
    """
    # Note: caller is responsible for closing the session (await session.close()).
    connector = aiohttp.TCPConnector(limit=0)  # unlimited; concurrency managed by the engine
    return aiohttp.ClientSession(connector=connector)
