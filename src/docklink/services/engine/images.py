"""Image endpoints of the engine API."""

import inspect
import json
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Union
from urllib.parse import quote

import structlog

from ...models.errors import ImagePullFailed
from ...models.image import Image
from .transport import EngineTransport

logger = structlog.get_logger(__name__)

ProgressCallback = Callable[[Dict[str, Any]], Union[None, Awaitable[None]]]


class ImageAPI:
    """Calls against /images."""

    def __init__(self, transport: EngineTransport):
        self._transport = transport

    async def find(self, repository: str, tag: str = "latest") -> Optional[Image]:
        """Resolve ``repository:tag``; None when the engine has no such image."""
        image = Image(repository=repository, tag=tag)
        response = await self._transport.request_optional(
            "GET", f"/images/{image.reference}/json"
        )
        if response is None:
            logger.debug("Image not found", image=image.name)
            return None
        data = response.json()
        image.id = data.get("Id")
        image.info = data
        return image

    async def find_all(self, all: bool = False) -> List[Image]:
        """List images; one Image per repository tag."""
        response = await self._transport.request(
            "GET", "/images/json", params={"all": all}
        )
        images = []
        for entry in response.json():
            for repo_tag in entry.get("RepoTags") or ["<none>:<none>"]:
                image = Image.parse(repo_tag)
                image.id = entry.get("Id")
                image.info = entry
                images.append(image)
        return images

    async def pull(
        self,
        repository: str,
        tag: str = "latest",
        on_progress: Optional[ProgressCallback] = None,
    ) -> Image:
        """Pull an image and return it resolved.

        Progress messages are passed to ``on_progress`` as they arrive.

        Raises:
            ImagePullFailed: the engine reported an error in the progress
                stream or the image is missing afterwards
        """
        name = f"{repository}:{tag}"
        logger.info("Pulling image", image=name)
        async with self._transport.stream(
            "POST",
            "/images/create",
            params={"fromImage": repository, "tag": tag},
            timeout=None,
        ) as response:
            async for line in response.aiter_lines():
                if not line.strip():
                    continue
                message = json.loads(line)
                if "error" in message:
                    raise ImagePullFailed(name, message["error"])
                if on_progress is not None:
                    outcome = on_progress(message)
                    if inspect.isawaitable(outcome):
                        await outcome

        image = await self.find(repository, tag)
        if image is None:
            raise ImagePullFailed(name, "image not present after pull")
        logger.info("Pulled image", image=name, image_id=image.id)
        return image

    async def remove(
        self, image: Image, force: bool = False, noprune: bool = False
    ) -> List[Dict[str, Any]]:
        """Remove an image; returns the engine's untag/delete report."""
        response = await self._transport.request(
            "DELETE",
            f"/images/{image.reference}",
            params={"force": force, "noprune": noprune},
        )
        return response.json() if response.content else []

    async def remove_images(
        self, names: Iterable[str], force: bool = False, noprune: bool = False
    ) -> None:
        """Remove several images given by name or id."""
        for name in names:
            await self._transport.request(
                "DELETE",
                f"/images/{quote(name, safe='')}",
                params={"force": force, "noprune": noprune},
            )

    async def tag(
        self, image: Image, repository: str, tag: str = "latest", force: bool = False
    ) -> Image:
        """Tag an image into ``repository:tag`` and update it in place."""
        source = image.id or image.reference
        await self._transport.request(
            "POST",
            f"/images/{source}/tag",
            params={"repo": repository, "tag": tag, "force": force},
        )
        image.repository = repository
        image.tag = tag
        return image

    async def search(self, term: str) -> List[Dict[str, Any]]:
        response = await self._transport.request(
            "GET", "/images/search", params={"term": term}
        )
        return response.json()

    async def history(self, image: Image) -> List[Dict[str, Any]]:
        response = await self._transport.request(
            "GET", f"/images/{image.reference}/history"
        )
        return response.json()
