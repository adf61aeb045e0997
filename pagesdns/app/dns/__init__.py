from typing import Optional
import threading

from .base import DNSRecordReconciler
from .cloudflare import CloudflareDNS
from pagesdns.app import utils
from pagesdns.config import config
from loguru import logger


class DNSProviderRegistry:
    """Hands out the DNS provider client for an operation.

    The process-wide client is built from ``cloudflare.*`` config on first
    use. An installation with a stored InstallationConfig gets its own
    client with that tenant's zone and token; a CredentialError raised while
    loading it only affects that installation's operation.
    """

    def __init__(self, settings: Optional[dict] = None):
        self._settings = settings
        self._default: Optional[DNSRecordReconciler] = None
        self._lock = threading.Lock()

    def _load_settings(self) -> dict:
        if self._settings is None:
            self._settings = {
                "zone_id": config.get_string("cloudflare.zone_id"),
                "api_token": config.get_string("cloudflare.api_token"),
                "email": config.get_string("cloudflare.email"),
                "global_api_key": config.get_string("cloudflare.global_api_key"),
                "api_url": config.get_string("cloudflare.api_url"),
                "ttl": config.get_int("cloudflare.ttl"),
                "proxied": config.get_bool("cloudflare.proxied"),
                "timeout": config.get_int("cloudflare.timeout_seconds"),
                "retries": config.get_int("cloudflare.retries"),
            }
        return self._settings

    def default(self) -> DNSRecordReconciler:
        with self._lock:
            if self._default is None:
                settings = self._load_settings()
                self._default = CloudflareDNS(**settings)
                logger.debug(
                    f"[dns] Initialised default provider for zone {settings['zone_id']}"
                )
            return self._default

    def for_installation(self, installation_id=None) -> DNSRecordReconciler:
        """Return the tenant override client, or the default one."""
        if installation_id is None:
            return self.default()
        tenant = utils.get_installation_config(installation_id)
        if tenant is None:
            return self.default()
        settings = dict(self._load_settings())
        settings.update(
            zone_id=tenant.zone_id,
            api_token=tenant.api_token,
            email=tenant.email,
            global_api_key=None,
        )
        logger.debug(
            f"[dns] Using installation {installation_id} override (zone {tenant.zone_id})"
        )
        return CloudflareDNS(**settings)

