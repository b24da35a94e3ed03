"""
Image resolution for the container backend
"""
import logging
from typing import List, Optional

import docker

from ..errors import ConfigurationError, TransientBackendError
from ..interfaces import IImageProvider
from ..models import ImageDef, ImageRef
from .image_selector import sort_image_defs

DEFAULT_REPOSITORY = "couchbase/server"
EDITIONS = ("enterprise", "community")


class DockerHubImageProvider(IImageProvider):
    """Resolves image definitions to release images published on Docker Hub"""

    def __init__(self, docker_client: docker.DockerClient, repository: str = DEFAULT_REPOSITORY,
                 logger: Optional[logging.Logger] = None):
        self.client = docker_client
        self.repository = repository
        self.logger = logger or logging.getLogger(__name__)

    def image_path(self, image_def: ImageDef) -> str:
        if image_def.use_serverless or image_def.use_columnar:
            raise ConfigurationError("serverless and columnar images are not published on Docker Hub")
        if image_def.build_no:
            raise ConfigurationError(f"build {image_def.build_no} is not a published release image")

        edition = "community" if image_def.use_community_edition else "enterprise"
        return f"{self.repository}:{edition}-{image_def.version}"

    def parse_tag(self, tag: str) -> Optional[ImageDef]:
        """Parse 'repository:edition-version' back into an image definition"""
        repository, _, tag_name = tag.rpartition(":")
        if repository != self.repository:
            return None

        edition, _, version = tag_name.partition("-")
        if edition not in EDITIONS or not version:
            return None
        return ImageDef(version=version, use_community_edition=(edition == "community"))

    def _ensure_image(self, image_path: str) -> None:
        try:
            self.client.images.get(image_path)
            return
        except docker.errors.ImageNotFound:
            pass
        except docker.errors.APIError as e:
            raise TransientBackendError(f"failed to inspect image {image_path}: {e}") from e

        self.logger.info(f"Pulling image {image_path}")
        repository, _, tag = image_path.rpartition(":")
        try:
            self.client.images.pull(repository, tag=tag)
        except docker.errors.NotFound as e:
            raise ConfigurationError(f"image {image_path} does not exist") from e
        except docker.errors.APIError as e:
            raise TransientBackendError(f"failed to pull image {image_path}: {e}") from e

    def get_image(self, image_def: ImageDef) -> ImageRef:
        image_path = self.image_path(image_def)
        self._ensure_image(image_path)
        return ImageRef(path=image_path)

    def get_image_raw(self, image_path: str) -> ImageRef:
        if ":" not in image_path.rpartition("/")[2]:
            image_path += ":latest"
        self._ensure_image(image_path)
        return ImageRef(path=image_path)

    def list_images(self) -> List[ImageDef]:
        try:
            images = self.client.images.list(name=self.repository)
        except docker.errors.APIError as e:
            raise TransientBackendError(f"failed to list images: {e}") from e

        defs = set()
        for image in images:
            for tag in image.tags:
                image_def = self.parse_tag(tag)
                if image_def is not None:
                    defs.add(image_def)
        return sort_image_defs(defs)

    def search_images(self, version: str) -> List[ImageDef]:
        return [
            image_def for image_def in self.list_images()
            if image_def.version == version or image_def.version.startswith(version + ".")
        ]
