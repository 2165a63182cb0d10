"""Read-only router queries: the status endpoint and the image version."""

from __future__ import annotations

import docker
import httpx
from docker.errors import ImageNotFound

from ..common.errors import WeaveError


async def fetch_status(url: str, timeout: float = 5.0) -> str:
    async with httpx.AsyncClient(timeout=timeout) as client:
        try:
            response = await client.get(url)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise WeaveError(f"Unable to fetch router status from {url}: {exc}") from exc
        return response.text


def image_version(client: docker.DockerClient, image: str) -> str:
    """The first non-``latest`` tag of the local router image."""

    try:
        local = client.images.get(image)
    except ImageNotFound as exc:
        raise WeaveError(f"Unable to find {image} image.") from exc
    repository = image.rsplit(":", 1)[0] if ":" in image.rsplit("/", 1)[-1] else image
    for tag in local.tags:
        name, _, version = tag.rpartition(":")
        if name == repository and version and version != "latest":
            return version
    return "unreleased"
