"""
Organization services - Stytch identity provider calls.

All Stytch organization API calls are isolated here for testability.
Callers get plain dataclasses back, never SDK response objects.
External calls must NOT be inside database transactions.
"""

import uuid
from collections.abc import Iterator
from dataclasses import dataclass
from io import BytesIO
from typing import Any

from django.conf import settings
from django.core.files.base import ContentFile
from django.core.files.storage import default_storage
from PIL import Image, UnidentifiedImageError
from stytch.core.response_base import StytchError

from apps.core.logging import get_logger
from apps.organizations.stytch_client import get_stytch_client

logger = get_logger(__name__)

# PIL format name -> file extension
LOGO_FORMATS = {
    "PNG": "png",
    "JPEG": "jpg",
    "WEBP": "webp",
    "GIF": "gif",
}


@dataclass(frozen=True)
class ExternalOrganization:
    """A Stytch organization as seen by this system."""

    organization_id: str
    name: str
    slug: str
    logo_url: str = ""


def _to_external(org: Any) -> ExternalOrganization:
    return ExternalOrganization(
        organization_id=org.organization_id,
        name=org.organization_name,
        slug=org.organization_slug or "",
        logo_url=getattr(org, "organization_logo_url", "") or "",
    )


def create_organization(name: str, slug: str | None = None) -> ExternalOrganization:
    """
    Create a Stytch organization.

    Raises:
        StytchError: If Stytch rejects the request (e.g. duplicate slug)
    """
    client = get_stytch_client()

    params: dict[str, Any] = {"organization_name": name}
    if slug:
        params["organization_slug"] = slug

    response = client.organizations.create(**params)
    organization = _to_external(response.organization)

    logger.info(
        "stytch_organization_created",
        stytch_org_id=organization.organization_id,
        slug=organization.slug,
    )
    return organization


def get_organization(stytch_org_id: str) -> ExternalOrganization | None:
    """
    Fetch a Stytch organization.

    Returns None when Stytch reports the organization does not exist.
    Any other Stytch error propagates.
    """
    client = get_stytch_client()

    try:
        response = client.organizations.get(organization_id=stytch_org_id)
    except StytchError as e:
        if e.details.status_code == 404:
            return None
        raise

    return _to_external(response.organization)


def list_organizations(page_size: int = 100) -> Iterator[ExternalOrganization]:
    """Iterate over every Stytch organization in the project, page by page."""
    client = get_stytch_client()
    cursor: str | None = None

    while True:
        response = client.organizations.search(limit=page_size, cursor=cursor)
        for org in response.organizations:
            yield _to_external(org)

        cursor = response.results_metadata.next_cursor
        if not cursor:
            return


def _detect_logo_extension(image_bytes: bytes) -> str:
    """
    Validate logo bytes and return the file extension to store them under.

    Raises:
        ValueError: If the payload is too large or not a supported image
    """
    max_size: int = settings.MEDIA_MAX_LOGO_SIZE_BYTES
    if len(image_bytes) > max_size:
        raise ValueError(f"Logo exceeds {max_size} bytes")

    try:
        with Image.open(BytesIO(image_bytes)) as image:
            image_format = image.format
            image.verify()
    except UnidentifiedImageError as e:
        raise ValueError("Logo is not a recognizable image") from e

    extension = LOGO_FORMATS.get(image_format or "")
    if extension is None:
        raise ValueError(f"Unsupported logo format: {image_format}")
    return extension


def set_organization_logo(stytch_org_id: str, image_bytes: bytes) -> str:
    """
    Upload a logo and point the Stytch organization at it.

    The image goes to default storage (S3 in production), then the public URL
    is written to the organization's logo field in Stytch.

    Returns:
        The public logo URL

    Raises:
        ValueError: If the image is invalid
        StytchError: If Stytch rejects the update
    """
    extension = _detect_logo_extension(image_bytes)
    key = f"logos/{stytch_org_id}/{uuid.uuid4().hex[:12]}.{extension}"

    saved_key = default_storage.save(key, ContentFile(image_bytes))
    logo_url = default_storage.url(saved_key)

    client = get_stytch_client()
    client.organizations.update(
        organization_id=stytch_org_id,
        organization_logo_url=logo_url,
    )

    logger.info("stytch_organization_logo_set", stytch_org_id=stytch_org_id, key=saved_key)
    return logo_url
