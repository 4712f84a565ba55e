"""SerpAPI review connector (provider-injected for tests/offline)."""

from __future__ import annotations

from typing import Any, Callable, Dict, Optional

import httpx

from ingestion.settings import Settings, get_settings

from .base import BaseConnector, ConfigurationError, PermanentError, RawPayload, TransientError


ProviderFn = Callable[[str], Dict[str, Any]]

# SerpAPI reports "no results" as an error string inside a 200 body.
_EMPTY_RESULT_MARKERS = ("hasn't returned any results", "no results")


class SerpApiConnector(BaseConnector):
    """Connector for SerpAPI review engines.

    - provider injected: offline mode, the function returns the payload
    - no provider: real HTTP call against ``settings.serpapi_endpoint``
    """

    source = "serpapi"

    def __init__(
        self,
        settings: Settings,
        provider: Optional[ProviderFn] = None,
        client: Optional[httpx.Client] = None,
    ):
        self._settings = settings
        self._provider = provider
        self._client = client

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        provider: Optional[ProviderFn] = None,
        client: Optional[httpx.Client] = None,
    ) -> "SerpApiConnector":
        cfg = settings or get_settings()
        if provider is None and not cfg.has_provider_key():
            raise ConfigurationError("SERPAPI_API_KEY is not configured.")
        return cls(cfg, provider=provider, client=client)

    def _fetch_raw(self, query: str) -> RawPayload:
        if self._provider is not None:
            payload = self._provider(query)
            if not isinstance(payload, dict):
                raise PermanentError("Provider returned a non-object payload.")
            return payload

        cfg = self._settings
        if not cfg.has_provider_key():
            raise ConfigurationError("SERPAPI_API_KEY is not configured.")

        params = {
            "engine": cfg.serpapi_engine,
            "q": query,
            "api_key": cfg.serpapi_api_key.get_secret_value(),  # type: ignore[union-attr]
            "num": int(cfg.serpapi_result_limit),
        }
        timeout = float(cfg.serpapi_timeout_seconds)
        try:
            if self._client is not None:
                resp = self._client.get(cfg.serpapi_endpoint, params=params, timeout=timeout)
            else:
                resp = httpx.get(cfg.serpapi_endpoint, params=params, timeout=timeout)
        except httpx.TimeoutException as exc:
            raise TransientError("SerpAPI timeout") from exc
        except httpx.HTTPError as exc:
            raise TransientError("SerpAPI transport error") from exc

        if resp.status_code == 429 or resp.status_code >= 500:
            raise TransientError(f"SerpAPI temporary failure: {resp.status_code}")
        if resp.status_code >= 400:
            raise PermanentError(f"SerpAPI error: {resp.status_code}")

        try:
            data = resp.json()
        except ValueError as exc:
            raise PermanentError("SerpAPI returned an undecodable body") from exc
        if not isinstance(data, dict):
            raise PermanentError("SerpAPI returned a non-object payload")

        error = data.get("error")
        if error:
            text = str(error).lower()
            if any(marker in text for marker in _EMPTY_RESULT_MARKERS):
                return {"search_metadata": data.get("search_metadata") or {}, "reviews_results": []}
            raise PermanentError(f"SerpAPI rejected the query: {error}")
        return data
