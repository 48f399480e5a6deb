"""
Ad server client.

The ad server picks a creative for (user, slot) and answers

  GET /ads?user_id=<id>&slot=<n>   →  200 { ad_id, ad_type, title, body, ... }
                                       204 when nothing is eligible

Sponsored posts are not served by the ad server: they are regular posts
flagged `is_sponsored` in TiDB, rotated through by slot index.

Errors here never reach the user: an unavailable ad server just means a feed
without ads.
"""
import logging
from typing import Optional

import httpx

from smartfeed.engine.stores import ContentStore
from smartfeed.engine.types import AdUnit, ContentItem

logger = logging.getLogger(__name__)


class AdClient:
    def __init__(self, base_url: str, timeout: float = 0.5) -> None:
        self.base_url = base_url
        self.timeout = timeout
        self._http: Optional[httpx.AsyncClient] = None

    async def start(self) -> None:
        self._http = httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout)

    async def stop(self) -> None:
        if self._http:
            await self._http.aclose()
            self._http = None

    async def fetch_ad(self, user_id: str, slot_index: int) -> Optional[AdUnit]:
        if self._http is None:
            raise RuntimeError("Ad client not started — call start() at startup")

        try:
            resp = await self._http.get("/ads", params={"user_id": user_id, "slot": slot_index})
            if resp.status_code == 204:
                return None
            resp.raise_for_status()
            body = resp.json()
        except httpx.HTTPError as exc:
            logger.warning("Ad server unavailable: %s — serving without ad", exc)
            return None

        return AdUnit(
            id=str(body["ad_id"]),
            ad_type=body.get("ad_type", "display"),
            title=body.get("title") or "Sponsored",
            body=body.get("body") or "",
            image_url=body.get("image_url"),
            video_url=body.get("video_url"),
            link=body.get("link"),
            advertiser=body.get("advertiser"),
            cta=body.get("cta") or "Learn More",
            duration_ms=int(body.get("duration_ms") or 5000),
        )


class AdServerProvider:
    """AdProvider backed by the ad server and the sponsored posts in TiDB."""

    def __init__(self, ads: AdClient, content: ContentStore, sponsored_pool_size: int = 10) -> None:
        self.ads = ads
        self.content = content
        self.sponsored_pool_size = sponsored_pool_size

    async def get_ad(self, user_id: str, slot_index: int) -> Optional[AdUnit]:
        return await self.ads.fetch_ad(user_id, slot_index)

    async def get_sponsored_post(self, user_id: str, slot_index: int) -> Optional[ContentItem]:
        pool = await self.content.find_sponsored(self.sponsored_pool_size)
        if not pool:
            return None
        return pool[slot_index % len(pool)]
