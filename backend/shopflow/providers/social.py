"""
Social channel adapters: Facebook page, Instagram business account, Pinterest.

Each channel is enabled only when its credentials are configured. `publish`
returns the platform post id or raises PublishError with the platform's
error message.
"""

import asyncio
import logging

import httpx

from shopflow.config import settings
from shopflow.errors import PublishError
from shopflow.providers.base import SocialPost

logger = logging.getLogger(__name__)

GRAPH_API = "https://graph.facebook.com/v22.0"
PINTEREST_API = "https://api.pinterest.com/v5"
SOCIAL_TIMEOUT = httpx.Timeout(30.0, connect=10.0)


def _error_message(exc: Exception) -> str:
    if isinstance(exc, httpx.HTTPStatusError):
        try:
            error = exc.response.json().get("error", {})
        except ValueError:
            error = {}
        if isinstance(error, dict) and error.get("message"):
            return error["message"]
        return f"HTTP {exc.response.status_code}"
    return str(exc) or type(exc).__name__


class _HttpChannel:
    name = ""

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None):
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=SOCIAL_TIMEOUT, transport=self._transport)

    async def publish(self, post: SocialPost, caption: str) -> str:
        try:
            post_id = await self._publish(post, caption)
        except PublishError:
            raise
        except Exception as exc:
            raise PublishError(self.name, _error_message(exc)) from exc
        logger.info("%s posted: %s (%s)", self.name, post.title, post_id)
        return post_id

    async def _publish(self, post: SocialPost, caption: str) -> str:
        raise NotImplementedError


class FacebookChannel(_HttpChannel):
    name = "facebook"

    def __init__(self, page_id: str | None = None, access_token: str | None = None, transport=None):
        super().__init__(transport)
        self.page_id = page_id if page_id is not None else settings.meta_page_id
        self.access_token = access_token if access_token is not None else settings.meta_page_access_token

    @property
    def enabled(self) -> bool:
        return bool(self.page_id and self.access_token)

    async def _publish(self, post: SocialPost, caption: str) -> str:
        data = {
            "message": caption,
            "link": f"https://{settings.store_domain}",
            "access_token": self.access_token,
        }
        async with self._client() as client:
            if post.image_url:
                resp = await client.post(f"{GRAPH_API}/{self.page_id}/photos", json={**data, "url": post.image_url})
            else:
                resp = await client.post(f"{GRAPH_API}/{self.page_id}/feed", json=data)
            resp.raise_for_status()
            return str(resp.json().get("id", ""))


class InstagramChannel(_HttpChannel):
    """Two-step publish: create a media container, then publish it."""

    name = "instagram"

    def __init__(self, ig_user_id: str | None = None, access_token: str | None = None, transport=None, container_wait: float = 5.0):
        super().__init__(transport)
        self.ig_user_id = ig_user_id if ig_user_id is not None else settings.meta_ig_user_id
        self.access_token = access_token if access_token is not None else settings.meta_page_access_token
        self.container_wait = container_wait

    @property
    def enabled(self) -> bool:
        return bool(self.ig_user_id and self.access_token)

    async def _publish(self, post: SocialPost, caption: str) -> str:
        if not post.image_url:
            raise PublishError(self.name, "no_image")

        async with self._client() as client:
            resp = await client.post(
                f"{GRAPH_API}/{self.ig_user_id}/media",
                json={"image_url": post.image_url, "caption": caption, "access_token": self.access_token},
            )
            resp.raise_for_status()
            container_id = resp.json().get("id")
            if not container_id:
                raise PublishError(self.name, "No container ID")

            # Instagram needs a moment to ingest the image before publishing
            await asyncio.sleep(self.container_wait)

            resp = await client.post(
                f"{GRAPH_API}/{self.ig_user_id}/media_publish",
                json={"creation_id": container_id, "access_token": self.access_token},
            )
            resp.raise_for_status()
            return str(resp.json().get("id", ""))


class PinterestChannel(_HttpChannel):
    name = "pinterest"

    def __init__(self, board_id: str | None = None, access_token: str | None = None, transport=None):
        super().__init__(transport)
        self.board_id = board_id if board_id is not None else settings.pinterest_board_id
        self.access_token = access_token if access_token is not None else settings.pinterest_access_token

    @property
    def enabled(self) -> bool:
        return bool(self.board_id and self.access_token)

    async def _publish(self, post: SocialPost, caption: str) -> str:
        if not post.image_url:
            raise PublishError(self.name, "no_image")

        async with self._client() as client:
            resp = await client.post(
                f"{PINTEREST_API}/pins",
                headers={"Authorization": f"Bearer {self.access_token}"},
                json={
                    "board_id": self.board_id,
                    "title": post.title[:100],
                    "description": caption,
                    "link": f"https://{settings.store_domain}",
                    "media_source": {"source_type": "image_url", "url": post.image_url},
                },
            )
            resp.raise_for_status()
            return str(resp.json().get("id", ""))


def default_channels() -> list:
    return [InstagramChannel(), FacebookChannel(), PinterestChannel()]
