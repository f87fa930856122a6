"""Client for the two hosting-platform REST endpoints the controller consumes."""

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import httpx

from .config import Config
from .errors import FetchError

USER_AGENT = "soten-notes/1.0"
REPOS_PER_PAGE = 100


class GitHubClient:
    """
    Thin async wrapper around the GitHub REST API.

    Features:
    - Current-user lookup used to re-validate a persisted session
    - Listing of the repositories an app installation grants access to,
      following pagination links
    - Construction of the OAuth authorize URL
    """

    def __init__(self, config: Config, client: Optional[httpx.AsyncClient] = None):
        """
        Initialize the client.

        Args:
            config: Configuration providing the API base URL and timeouts
            client: Optional pre-built httpx client (tests inject a mock transport)
        """
        self.config = config
        self.logger = logging.getLogger('soten.github')
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            timeout=config.http_timeout,
            headers={"User-Agent": USER_AGENT},
            follow_redirects=True,
        )

    @staticmethod
    def _headers(token: str) -> Dict[str, str]:
        return {
            "Authorization": f"token {token}",
            "Accept": "application/vnd.github.v3+json",
        }

    async def get_current_user(self, token: str) -> Optional[Dict[str, Any]]:
        """
        Look up the user a token belongs to.

        Returns:
            The user document (with ``login``), or None when the token is rejected

        Raises:
            FetchError: any other non-success status
            httpx.HTTPError: transport failures
        """
        response = await self.client.get(f"{self.config.api_base_url}/user", headers=self._headers(token))

        if response.status_code in (401, 403):
            self.logger.info(f"Token rejected by user endpoint ({response.status_code})")
            return None

        if not response.is_success:
            raise FetchError("Unexpected status code returned from user endpoint")

        return response.json()

    async def list_installation_repositories(self, installation_id: str, token: str) -> Optional[List[str]]:
        """
        List the repositories an installation grants the token access to.

        Args:
            installation_id: App installation identifier from the session
            token: User access token

        Returns:
            "owner/repo" names in API order, an empty list when there are none,
            or None when the listing failed
        """
        url: Optional[str] = (
            f"{self.config.api_base_url}/user/installations/{installation_id}/repositories"
            f"?{urlencode({'per_page': REPOS_PER_PAGE})}"
        )
        names: List[str] = []

        while url:
            try:
                response = await self.client.get(url, headers=self._headers(token))
            except httpx.HTTPError as e:
                self.logger.error(f"Failed to fetch repositories for installation {installation_id}: {e}")
                return None

            if not response.is_success:
                self.logger.error(
                    f"Failed to fetch repositories for installation {installation_id}: "
                    f"{response.status_code} {response.reason_phrase}"
                )
                return None

            try:
                data = response.json()
                names.extend(repo["full_name"] for repo in data.get("repositories", []))
            except (ValueError, KeyError, TypeError, AttributeError) as e:
                self.logger.error(f"Malformed repository listing for installation {installation_id}: {e}")
                return None

            url = response.links.get("next", {}).get("url")

        if not names:
            self.logger.warning("No repositories found for the installation.")

        return names

    def authorize_url(self, redirect_uri: str) -> str:
        """Build the OAuth authorize URL the user must visit to log in."""
        if not self.config.github_client_id:
            raise ValueError("No GitHub client id configured (SOTEN_GH_CLIENT_ID)")
        query = urlencode({"client_id": self.config.github_client_id, "redirect_uri": redirect_uri})
        return f"https://{self.config.git_host}/login/oauth/authorize?{query}"

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()
