# callbilling/services/provider_client.py
import logging
from typing import Any, Dict, List, Optional

import requests

from callbilling.config import get_settings
from callbilling.errors import ProviderError

logger = logging.getLogger(__name__)


class ProviderClient:
    """
    Thin wrapper around the telephony provider's REST API.

    Keeps the API key and base URL in one place, and lets tests swap the
    whole client for a fake through the FastAPI dependency below.
    """

    def __init__(self, api_key: str, base_url: str, timeout: float = 15.0):
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._session = requests.Session()
        self._session.headers.update(
            {
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            }
        )

    def _post(self, path: str, body: Dict[str, Any]) -> Any:
        url = f"{self._base_url}/{path}"
        try:
            resp = self._session.post(url, json=body, timeout=self._timeout)
        except requests.RequestException as exc:
            raise ProviderError(f"Provider API unreachable: {exc}") from exc

        if not resp.ok:
            logger.error("Provider API %s returned %s: %s", path, resp.status_code, resp.text[:500])
            raise ProviderError(f"Provider API error: {resp.status_code}")

        try:
            return resp.json()
        except ValueError as exc:
            raise ProviderError(f"Provider API returned invalid JSON from {path}") from exc

    def list_calls(
        self,
        agent_id: Optional[str] = None,
        limit: int = 50,
        page_token: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        One page of calls, newest first.

        Returns {"calls": [...], "has_more": bool, "next_page_token": str | None}.
        """
        body: Dict[str, Any] = {"limit": limit}
        if agent_id:
            body["agent_id"] = agent_id
        if page_token:
            body["page_token"] = page_token

        data = self._post("list-calls", body)
        if isinstance(data, list):
            # Older API versions return a bare list with no paging
            return {"calls": data, "has_more": False, "next_page_token": None}
        return data

    def list_agents(self, limit: int = 100) -> List[Dict[str, Any]]:
        data = self._post("list-agents", {"limit": limit})
        if isinstance(data, dict):
            return data.get("agents") or []
        return data


def get_provider_client() -> ProviderClient:
    """
    FastAPI dependency to get a configured ProviderClient.
    Raises RuntimeError if configuration is incomplete.
    """
    settings = get_settings()

    missing: list[str] = []
    if not settings.PROVIDER_API_KEY:
        missing.append("PROVIDER_API_KEY")
    if not settings.PROVIDER_API_BASE_URL:
        missing.append("PROVIDER_API_BASE_URL")

    if missing:
        raise RuntimeError(f"Provider API not configured, missing: {', '.join(missing)}")

    return ProviderClient(
        api_key=settings.PROVIDER_API_KEY,
        base_url=settings.PROVIDER_API_BASE_URL,
        timeout=settings.PROVIDER_TIMEOUT_SECONDS,
    )
