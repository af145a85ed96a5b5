# ABOUTME: Environment-driven settings for zapfeed
# ABOUTME: Reads LNbits connection details and feed limits once per process

import logging
import os

from pydantic import BaseModel, Field

from zapfeed.exceptions import CredentialsNotFoundError, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
DEFAULT_MAX_RECORDS = 100
DEFAULT_PAGE_SIZE = 10
DEFAULT_ALLOWANCE_SATS = 25000


class Settings(BaseModel):
    """Connection and feed settings."""

    node_url: str
    username: str | None = None
    password: str | None = None
    timeout: float = Field(default=DEFAULT_TIMEOUT, gt=0)
    max_records: int = Field(default=DEFAULT_MAX_RECORDS, gt=0)
    page_size: int = Field(default=DEFAULT_PAGE_SIZE, gt=0)
    allowance_sats: int = Field(default=DEFAULT_ALLOWANCE_SATS, ge=0)

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from ``LNBITS_*`` and ``ZAPFEED_*`` variables."""
        node_url = os.environ.get("LNBITS_NODE_URL")
        if not node_url:
            raise ValidationError("LNBITS_NODE_URL is not set")

        values: dict = {
            "node_url": node_url.rstrip("/"),
            "username": os.environ.get("LNBITS_USERNAME"),
            "password": os.environ.get("LNBITS_PASSWORD"),
        }
        optional = {
            "timeout": "LNBITS_TIMEOUT",
            "max_records": "ZAPFEED_MAX_RECORDS",
            "page_size": "ZAPFEED_PAGE_SIZE",
            "allowance_sats": "ZAPFEED_ALLOWANCE_SATS",
        }
        for field, env_name in optional.items():
            raw = os.environ.get(env_name)
            if raw:
                values[field] = raw

        logger.debug(f"Loaded settings for {values['node_url']}")
        return cls(**values)

    def credentials(self) -> tuple[str, str]:
        """Return the admin username and password, or fail."""
        if self.username and self.password:
            return self.username, self.password
        raise CredentialsNotFoundError(
            "LNBITS_USERNAME and LNBITS_PASSWORD must be set for admin API calls"
        )
