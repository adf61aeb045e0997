from .app_auth import GitHubAppAuth
from .client import GitHubClient

__all__ = ["GitHubAppAuth", "GitHubClient"]
