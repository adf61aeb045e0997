from vyper import v, Vyper
from loguru import logger

from pathlib import Path


def load_config() -> Vyper:
    v.set_config_name("app")  # Looks for app.yaml/app.yml
    # User-supplied paths checked first so they override the bundled defaults
    v.add_config_path("/etc/pagesdns")
    v.add_config_path(".")
    v.add_config_path("./config")
    v.add_config_path(str(Path(__file__).parent))
    v.set_env_prefix("PAGESDNS")
    v.set_env_key_replacer("_", ".")
    v.automatic_env()

    v.set_default("log_level", "info")
    v.set_default("log_to_file", True)
    v.set_default("log_dir", "logs")
    v.set_default("environment", "production")
    v.set_default("encryption_key", "")

    # HTTP server
    v.set_default("app.listen_host", "0.0.0.0")
    v.set_default("app.listen_port", 3000)
    v.set_default("app.proxy_support", False)
    v.set_default("app.proxy_support_base", "http://127.0.0.1")
    v.set_default("app.auth_username", "pagesdns")
    v.set_default("app.auth_password", "changeme")

    # Datastore
    v.set_default("datastore.type", "sqlite")
    v.set_default("datastore.port", 3306)
    v.set_default("datastore.db_location", "data/pages.db")

    # GitHub App
    v.set_default("github.api_url", "https://api.github.com")
    v.set_default("github.app_id", "")
    v.set_default("github.installation_id", "")
    v.set_default("github.private_key", "")
    v.set_default("github.private_key_path", "")
    v.set_default("github.webhook_secret", "")
    v.set_default("github.app_token", "")
    v.set_default("github.timeout_seconds", 30)
    v.set_default("github.retries", 3)

    # Installation token lifecycle
    v.set_default("token.refresh_buffer_minutes", 5)
    v.set_default("token.check_interval_minutes", 45)
    v.set_default("token.max_retries", 5)
    v.set_default("token.initial_delay_ms", 1000)
    v.set_default("token.max_delay_ms", 15000)

    # Cloudflare
    v.set_default("cloudflare.api_url", "https://api.cloudflare.com/client/v4")
    v.set_default("cloudflare.zone_id", "")
    v.set_default("cloudflare.api_token", "")
    v.set_default("cloudflare.email", "")
    v.set_default("cloudflare.global_api_key", "")
    v.set_default("cloudflare.target_domain", "")
    v.set_default("cloudflare.ttl", 1)
    v.set_default("cloudflare.proxied", False)
    v.set_default("cloudflare.timeout_seconds", 30)
    v.set_default("cloudflare.retries", 3)

    # Reconciliation engine
    v.set_default("reconcile.candidate_branches", ["main", "master", "gh-pages"])
    v.set_default("reconcile.per_repo_lock", False)

    try:
        if not v.read_in_config():
            logger.warning("No config file found, using defaults")
    except Exception:
        logger.warning("No config file found, using defaults")

    return v


# Global config instance
config = load_config()
