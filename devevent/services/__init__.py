"""Service layer utilities for outbound integrations."""

from .storage import ImageStorage, StoredImage, build_image_storage, get_image_storage

__all__ = [
    "ImageStorage",
    "StoredImage",
    "build_image_storage",
    "get_image_storage",
]
