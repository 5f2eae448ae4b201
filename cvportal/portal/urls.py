"""URL and name helpers for generated portals."""
import re
from typing import Optional

from cvportal import config
from cvportal.models import ApiUrls, PortalUrls

DEFAULT_SLUG = "professional"
# Hugging Face repo names are limited to 96 characters
MAX_SPACE_NAME_LENGTH = 96


def slugify(name: Optional[str]) -> str:
    """Lower-case, non-alphanumerics to single dashes, no leading/trailing dash."""
    slug = re.sub(r"[^a-z0-9]+", "-", (name or "").lower()).strip("-")
    return slug or DEFAULT_SLUG


def urls_from_base(base_url: str, api_base: Optional[str] = None) -> PortalUrls:
    base_url = base_url.rstrip("/")
    api_base = (api_base or f"{base_url}/api").rstrip("/")
    return PortalUrls(
        portal=base_url,
        chat=f"{base_url}/chat",
        contact=f"{base_url}/contact",
        download=f"{base_url}/download",
        qr_menu=f"{base_url}/qr-menu",
        api=ApiUrls(
            chat=f"{api_base}/chat",
            contact=f"{api_base}/contact",
            analytics=f"{api_base}/analytics",
        ),
    )


def generate_portal_urls(name: Optional[str]) -> PortalUrls:
    """Placeholder URLs used until (or unless) a deployment succeeds."""
    return urls_from_base(f"https://{slugify(name)}{config.PORTAL_DOMAIN_SUFFIX}")


def generate_space_name(name: Optional[str], job_id: str) -> str:
    """Deterministic space name so redeploying a job targets the same space."""
    suffix = re.sub(r"[^a-z0-9]", "", job_id.lower())[-8:] or "portal"
    tail = f"-cv-portal-{suffix}"
    slug = slugify(name)[: MAX_SPACE_NAME_LENGTH - len(tail)].rstrip("-")
    return f"{slug or DEFAULT_SLUG}{tail}"


def space_host_url(owner: str, space_name: str) -> str:
    """Public URL of a running space (``owner/name`` -> ``owner-name.hf.space``)."""
    host = re.sub(r"[^a-z0-9]+", "-", f"{owner}-{space_name}".lower()).strip("-")
    return f"https://{host}.hf.space"


def apply_deployment_urls(space_url: str, api_url: Optional[str] = None) -> PortalUrls:
    return urls_from_base(space_url, api_url)
