"""
Thin NerdGraph (New Relic GraphQL) client shared by the synthetics export.

One client is built per run from the API key and handed to everything that
talks to New Relic.
"""
import requests

GRAPHQL_URLS = {
    "US": "https://api.newrelic.com/graphql",
    "EU": "https://api.eu.newrelic.com/graphql",
}
DEFAULT_TIMEOUT = 60


class NerdGraphError(Exception):
    """Raised for any failed NerdGraph call (network, HTTP status, bad JSON)."""


def graphql_url(region="US"):
    region = (region or "US").strip().upper()
    if region not in GRAPHQL_URLS:
        raise ValueError(f'Region must be "US" or "EU", got "{region}".')
    return GRAPHQL_URLS[region]


class NerdGraphClient:

    def __init__(self, api_key: str, region: str = "US", timeout: float = DEFAULT_TIMEOUT):
        if not api_key:
            raise NerdGraphError("Missing API key. Set NR_API_KEY environment variable.")
        self.url = graphql_url(region)
        self.timeout = timeout
        self._session = requests.Session()
        self._session.headers.update({
            "Content-Type": "application/json",
            "API-Key": api_key,
        })

    def query(self, query: str, variables=None) -> dict:
        """
        POST a query and return the decoded response body as-is.

        The body is the raw {"data": ...} envelope (it may carry "errors");
        checking its shape is left to the caller.
        """
        payload = {"query": query, "variables": variables or {}}
        try:
            response = self._session.post(self.url, json=payload, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise NerdGraphError(f"NerdGraph request failed: {e}") from e

        try:
            return response.json()
        except ValueError as e:
            raise NerdGraphError(f"NerdGraph returned invalid JSON (HTTP {response.status_code})") from e

    def close(self):
        self._session.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
