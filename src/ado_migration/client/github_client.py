"""GitHub GraphQL client for polling repository migrations.

Used when the migration tool's output did not contain a migration ID: the
migration is then located by target organization and repository name.
"""

import time
from typing import Any

import httpx
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    retry_if_result,
    stop_after_delay,
    wait_fixed,
)

from ado_migration.client.exceptions import (
    APIError,
    AuthenticationError,
    NetworkError,
    RateLimitError,
    RemoteFailure,
    ServerError,
)
from ado_migration.config import GitHubConfig
from ado_migration.utils.logging import get_logger

logger = get_logger(__name__)

REPOSITORY_MIGRATION_QUERY = """
query($login: String!, $repositoryName: String!) {
  organization(login: $login) {
    repositoryMigrations(
      first: 1
      repositoryName: $repositoryName
      orderBy: {field: CREATED_AT, direction: DESC}
    ) {
      nodes {
        id
        state
        failureReason
        repositoryName
        createdAt
      }
    }
  }
}
"""

SUCCEEDED_STATE = "SUCCEEDED"
FAILED_STATES = frozenset({"FAILED", "FAILED_VALIDATION"})
TERMINAL_STATES = FAILED_STATES | {SUCCEEDED_STATE}


def _is_unfinished(migration: dict[str, Any] | None) -> bool:
    return migration is None or migration.get("state") not in TERMINAL_STATES


class GitHubClient:
    """Async GitHub GraphQL client with error mapping and status polling."""

    def __init__(
        self,
        config: GitHubConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the GitHub client.

        Args:
            config: GitHub configuration
            transport: Optional httpx transport (tests inject a MockTransport)
        """
        self.config = config
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if config.token:
            headers["Authorization"] = f"Bearer {config.token}"

        self.client = httpx.AsyncClient(
            headers=headers,
            timeout=httpx.Timeout(config.timeout, connect=10.0),
            verify=config.verify_ssl,
            transport=transport,
        )

        logger.info(
            "github_client_initialized",
            graphql_url=config.graphql_url,
            authenticated=bool(config.token),
        )

    async def close(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def _handle_error_response(self, response: httpx.Response) -> None:
        """Raise the exception matching an HTTP error response."""
        status_code = response.status_code
        try:
            error_data = response.json()
        except ValueError:
            error_data = {"message": response.text}

        if status_code == 401:
            raise AuthenticationError("Authentication failed", status_code, error_data)
        if status_code in (403, 429) and response.headers.get("x-ratelimit-remaining") == "0":
            raise RateLimitError("Rate limit exceeded", status_code, error_data)
        if 500 <= status_code < 600:
            raise ServerError("Server error", status_code, error_data)
        raise APIError("API error", status_code, error_data)

    async def graphql(self, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        """Execute a GraphQL query and return its ``data`` member.

        Raises:
            NetworkError: For connection failures and timeouts
            APIError: For HTTP errors and GraphQL errors
        """
        start_time = time.monotonic()
        try:
            response = await self.client.post(
                self.config.graphql_url, json={"query": query, "variables": variables}
            )
        except httpx.TimeoutException as e:
            logger.warning("github_timeout_error", error=str(e))
            raise NetworkError(f"Request timeout: {e}") from e
        except httpx.TransportError as e:
            logger.warning("github_network_error", error=str(e))
            raise NetworkError(f"Network error: {e}") from e

        logger.debug(
            "github_request_completed",
            status_code=response.status_code,
            duration_ms=round((time.monotonic() - start_time) * 1000, 2),
        )

        if response.status_code >= 400:
            self._handle_error_response(response)

        payload = response.json()
        if payload.get("errors"):
            messages = "; ".join(e.get("message", "unknown") for e in payload["errors"])
            raise APIError(f"GraphQL error: {messages}", response.status_code)

        return payload.get("data") or {}

    async def get_repository_migration(self, org: str, repo: str) -> dict[str, Any] | None:
        """Return the most recent migration into ``org/repo``, or None if none exists yet."""
        data = await self.graphql(
            REPOSITORY_MIGRATION_QUERY, {"login": org, "repositoryName": repo}
        )
        organization = data.get("organization")
        if organization is None:
            raise APIError(f"Organization not found: {org}")

        nodes = organization.get("repositoryMigrations", {}).get("nodes") or []
        return nodes[0] if nodes else None

    async def wait_for_repository_migration(
        self,
        org: str,
        repo: str,
        timeout: float,
        poll_interval: float | None = None,
    ) -> dict[str, Any]:
        """Poll until the migration into ``org/repo`` reaches a terminal state.

        Returns:
            The migration node when it SUCCEEDED

        Raises:
            RemoteFailure: If the migration failed, never appeared, or the wait timed out
        """
        interval = poll_interval if poll_interval is not None else self.config.poll_interval
        retrying = AsyncRetrying(
            stop=stop_after_delay(timeout),
            wait=wait_fixed(interval),
            retry=(
                retry_if_result(_is_unfinished)
                | retry_if_exception_type((NetworkError, ServerError, RateLimitError))
            ),
            reraise=True,
        )

        try:
            migration = await retrying(self.get_repository_migration, org, repo)
        except RetryError as e:
            last = e.last_attempt.result() if not e.last_attempt.failed else None
            state = last.get("state") if last else "NOT_FOUND"
            raise RemoteFailure(
                f"wait timed out after {timeout:g}s (last state: {state})"
            ) from e
        except (NetworkError, APIError) as e:
            raise RemoteFailure(f"wait could not poll migration status: {e}") from e

        if migration["state"] in FAILED_STATES:
            reason = migration.get("failureReason") or "no reason given"
            raise RemoteFailure(f"migration {migration['state'].lower()}: {reason}")

        logger.info(
            "repository_migration_succeeded",
            org=org,
            repo=repo,
            migration_id=migration.get("id"),
        )
        return migration
