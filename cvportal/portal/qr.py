"""Trackable QR code records pointing at a generated portal."""
from typing import Any, Dict, List
from urllib.parse import urlencode

import structlog

from cvportal.db import PortalRepository
from cvportal.models import PortalUrls

logger = structlog.get_logger()


class QRCodeService:
    """Records QR assets; rendering the actual image happens downstream."""

    def __init__(self, repository: PortalRepository):
        self.repository = repository

    def generate_qr_code(self, job_id: str, kind: str, target_url: str, **metadata: Any) -> Dict[str, Any]:
        """Store one QR record and return it with its id."""
        tracking_url = f"{target_url}?{urlencode({'utm_source': 'qr', 'utm_content': kind})}"
        document = {
            "type": "custom",
            "data": target_url,
            "trackingUrl": tracking_url,
            "metadata": {"isActive": True, "trackingEnabled": True, **metadata},
        }
        qr_id = self.repository.insert_qr_code(job_id, kind, target_url, document)
        return {"id": qr_id, **document}

    def generate_portal_codes(self, job_id: str, urls: PortalUrls) -> List[Dict[str, Any]]:
        """Create the portal and chat QR codes for a job."""
        codes = [
            self.generate_qr_code(
                job_id, "portal", urls.portal,
                title="Web Portal QR Code",
                description="Scan to view interactive professional portal",
                tags=["portal", "web", "interactive"],
            ),
            self.generate_qr_code(
                job_id, "chat", urls.chat,
                title="AI Chat QR Code",
                description="Scan to chat with AI about my professional background",
                tags=["chat", "ai", "interactive"],
            ),
        ]
        logger.info("qr_codes_generated", job_id=job_id, qr_ids=[c["id"] for c in codes])
        return codes
