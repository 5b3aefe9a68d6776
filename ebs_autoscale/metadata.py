"""
EC2 instance metadata (IMDSv2).

Resolves the InstanceContext once per invocation.
"""

import logging

import requests

from .errors import MetadataError
from .models import InstanceContext

logger = logging.getLogger(__name__)

IMDS_URL = "http://169.254.169.254/latest"
TOKEN_TTL_SECONDS = 21600


class InstanceMetadata:
    """Small IMDSv2 client: one session token, then plain GETs."""

    def __init__(self, base_url: str = IMDS_URL, timeout: float = 2.0, session: requests.Session | None = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self._token = None

    def _get_token(self) -> str:
        if self._token is None:
            try:
                response = self.session.put(
                    f"{self.base_url}/api/token",
                    headers={"X-aws-ec2-metadata-token-ttl-seconds": str(TOKEN_TTL_SECONDS)},
                    timeout=self.timeout,
                )
                response.raise_for_status()
            except requests.RequestException as e:
                raise MetadataError(f"Could not get IMDSv2 token: {e}")
            self._token = response.text.strip()
        return self._token

    def get(self, path: str, required: bool = True) -> str | None:
        """
        Fetch one meta-data path, e.g. 'instance-id'.

        Returns None for a missing optional path.

        Raises:
            MetadataError: If the service is unreachable or a required path is missing
        """
        url = f"{self.base_url}/meta-data/{path}"
        try:
            response = self.session.get(
                url,
                headers={"X-aws-ec2-metadata-token": self._get_token()},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise MetadataError(f"Could not reach instance metadata at {url}: {e}")

        if response.status_code == 404 and not required:
            return None
        if response.status_code != 200:
            raise MetadataError(
                f"Instance metadata {path} returned HTTP {response.status_code}",
                details={"url": url, "status": response.status_code, "body": response.text[:200]},
            )

        value = response.text.strip()
        if not value:
            if required:
                raise MetadataError(f"Instance metadata {path} is empty")
            return None
        return value

    def instance_context(self) -> InstanceContext:
        instance_id = self.get("instance-id")
        availability_zone = self.get("placement/availability-zone")
        region = self.get("placement/region", required=False) or region_from_zone(availability_zone)
        ctx = InstanceContext(instance_id=instance_id, availability_zone=availability_zone, region=region)
        logger.debug(f"Instance context: {ctx}")
        return ctx


def region_from_zone(availability_zone: str) -> str:
    """us-east-1a -> us-east-1"""
    if availability_zone and availability_zone[-1].isalpha():
        return availability_zone[:-1]
    return availability_zone
