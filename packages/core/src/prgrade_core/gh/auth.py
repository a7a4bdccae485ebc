"""GitHub credentials for the review worker.

Resolution order (stops at first success):
  1. GitHub App installation token, when the job carries an installation id
     and the App id/private key are configured
  2. GITHUB_TOKEN (local development and single-tenant deployments)

No source available is a MissingCredentialsError: the job is not retried.
"""

from __future__ import annotations

import logging

from github import Auth, Github, GithubException, GithubIntegration

from prgrade_core.errors import GatewayError, MissingCredentialsError
from prgrade_core.metrics import observe_call

logger = logging.getLogger(__name__)


def get_installation_token(app_id: str, private_key: str, installation_id: str | int) -> str:
    """Exchange the App's JWT for a short-lived installation access token."""
    integration = GithubIntegration(auth=Auth.AppAuth(int(app_id), private_key))
    try:
        with observe_call("github", "installation_token"):
            return integration.get_access_token(int(installation_id)).token
    except GithubException as e:
        if e.status in (401, 404):
            raise MissingCredentialsError(f"GitHub App installation {installation_id} is not accessible: {e}") from e
        raise GatewayError("github", "installation_token", e) from e


def github_client(config: dict, installation_id: str | int | None = None) -> Github:
    timeout = config.get("github_timeout", 10)
    app_id = config.get("github_app_id")
    private_key = config.get("github_private_key")

    if installation_id and app_id and private_key:
        token = get_installation_token(app_id, private_key, installation_id)
        logger.debug("Using installation token for installation %s", installation_id)
    elif config.get("github_token"):
        token = config["github_token"]
    else:
        raise MissingCredentialsError(
            "No GitHub credentials: the job has no installation id and GITHUB_TOKEN is not set."
            if not installation_id
            else "GITHUB_APP_ID and GITHUB_PRIVATE_KEY must be set to use installation tokens."
        )
    return Github(auth=Auth.Token(token), timeout=timeout)
