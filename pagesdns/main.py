import datetime
import importlib.metadata
import sys

import cherrypy
from loguru import logger

from pagesdns.app import configure_logging
from pagesdns.app.api.admin import AdminAPI
from pagesdns.app.api.health import HealthAPI
from pagesdns.app.api.status import StatusAPI
from pagesdns.app.api.webhook import WebhookAPI
from pagesdns.app.db import connect
from pagesdns.app.dns import DNSProviderRegistry
from pagesdns.app.github import GitHubAppAuth, GitHubClient
from pagesdns.app.reconciler import DomainReconciler
from pagesdns.app.token_manager import TokenManager
from pagesdns.config import config

try:
    app_version = importlib.metadata.version("pagesdns")
except importlib.metadata.PackageNotFoundError:
    app_version = "dev"


class Root:
    pass


def build_token_manager() -> TokenManager:
    issuer = GitHubAppAuth(
        app_id=config.get_string("github.app_id"),
        installation_id=config.get_string("github.installation_id"),
        private_key=config.get_string("github.private_key") or None,
        private_key_path=config.get_string("github.private_key_path") or None,
        api_url=config.get_string("github.api_url"),
        timeout=config.get_int("github.timeout_seconds"),
    )
    return TokenManager(
        issuer,
        fallback_token=config.get_string("github.app_token"),
        refresh_buffer=datetime.timedelta(
            minutes=config.get_int("token.refresh_buffer_minutes")
        ),
        check_interval_seconds=config.get_int("token.check_interval_minutes") * 60,
        max_retries=config.get_int("token.max_retries"),
        initial_delay=config.get_int("token.initial_delay_ms") / 1000.0,
        max_delay=config.get_int("token.max_delay_ms") / 1000.0,
    )


def build_reconciler(token_manager: TokenManager, registry: DNSProviderRegistry):
    github = GitHubClient(
        token_manager.acquire,
        api_url=config.get_string("github.api_url"),
        timeout=config.get_int("github.timeout_seconds"),
        retries=config.get_int("github.retries"),
    )
    return DomainReconciler(
        github,
        registry,
        target_domain=config.get_string("cloudflare.target_domain"),
        candidate_branches=config.get("reconcile.candidate_branches"),
        per_repo_lock=config.get_bool("reconcile.per_repo_lock"),
    )


def main():
    token_manager = None
    try:
        configure_logging()
        logger.info(f"Starting pagesdns v{app_version}")

        try:
            connect(config.get("datastore.type"))
        except Exception as e:
            logger.error(str(e))
            print("ERROR: " + str(e))
            sys.exit(1)
        logger.info("Database Connected!")

        token_manager = build_token_manager()
        token_manager.start()
        if not token_manager.acquire():
            logger.warning("No GitHub token at startup; API calls will be anonymous")

        registry = DNSProviderRegistry()
        reconciler = build_reconciler(token_manager, registry)
        production = config.get_string("environment") == "production"

        user_password_dict = {
            config.get_string("app.auth_username"): config.get_string("app.auth_password")
        }
        check_password = cherrypy.lib.auth_basic.checkpassword_dict(user_password_dict)

        cherrypy.config.update(
            {
                "server.socket_host": config.get_string("app.listen_host"),
                "server.socket_port": config.get_int("app.listen_port"),
                "tools.proxy.on": config.get_bool("app.proxy_support"),
                "tools.proxy.base": config.get_string("app.proxy_support_base"),
                # /webhook and /status are index handlers; answer them without a redirect
                "tools.trailing_slash.on": False,
                "tools.response_headers.on": True,
                "tools.response_headers.headers": [
                    ("Server", "pagesdns v" + app_version)
                ],
                "environment": config.get("environment"),
            }
        )
        if config.get_string("log_level").upper() != "DEBUG":
            cherrypy.log.access_log.propagate = False

        root = Root()
        health = HealthAPI()
        root.health = health.health
        root.ready = health.ready
        root.status = StatusAPI(token_manager, reconciler)
        root.webhook = WebhookAPI(
            reconciler,
            secret=config.get_string("github.webhook_secret"),
            require_signature=production,
        )
        root.admin = AdminAPI(
            token_manager,
            registry,
            target_domain=config.get_string("cloudflare.target_domain"),
        )

        cherrypy.tree.mount(
            root,
            "/",
            {
                "/admin": {
                    "tools.auth_basic.on": True,
                    "tools.auth_basic.realm": "pagesdns",
                    "tools.auth_basic.checkpassword": check_password,
                }
            },
        )
        cherrypy.engine.subscribe("stop", token_manager.stop)
        cherrypy.engine.start()
        logger.success(f"Server started on port {config.get_int('app.listen_port')}")
        cherrypy.engine.block()

    except Exception as e:
        logger.critical(f"Server startup failed: {e}")
        if token_manager is not None:
            token_manager.stop()
        raise


if __name__ == "__main__":
    main()
