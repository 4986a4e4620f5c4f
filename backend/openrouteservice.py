"""Async client for the OpenRouteService snap and directions endpoints.

Only the two calls the planner needs are wrapped. Both raise
``OpenRouteServiceError`` on HTTP errors and transport failures; the error
keeps the status code and the provider's message so callers can react to
specific rejections (e.g. an unsupported request option).
"""

import logging
from typing import Any, Sequence

import httpx

from models import TripType
from settings import DIRECTIONS_TIMEOUT_S, SNAP_TIMEOUT_S, Settings

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.openrouteservice.org"

# Routing network used for each trip type.
PROFILES: dict[str, str] = {
    "hiking": "foot-hiking",
    "cycling": "cycling-regular",
}


def profile_for(trip_type: TripType) -> str:
    return PROFILES[trip_type]


class OpenRouteServiceError(Exception):
    """An OpenRouteService request failed.

    Attributes:
        status_code: HTTP status of the response, or None when the request
            never got one (timeout, connection error).
        message: The provider's error message, if it sent one.
    """

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def _error_message(response: httpx.Response) -> str:
    """Pulls the error text out of an ORS error body.

    ORS sends ``{"error": {"code": ..., "message": "..."}}`` from the routing
    engine and ``{"error": "..."}`` from the API gateway.
    """
    try:
        body = response.json()
    except ValueError:
        return response.text
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        return str(error.get("message", ""))
    if error:
        return str(error)
    return response.text


class OpenRouteServiceClient:
    """Thin wrapper over ``httpx.AsyncClient`` for ORS.

    Args:
        api_key: ORS API key, sent in the ``Authorization`` header.
        base_url: API root; override for self-hosted instances.
        snap_timeout: Seconds to wait for a snap response.
        directions_timeout: Seconds to wait for a directions response.
        http_client: Optional pre-constructed client (tests pass one with a
            mock transport). A client created here is closed by ``aclose``.
    """

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = DEFAULT_BASE_URL,
        snap_timeout: float = SNAP_TIMEOUT_S,
        directions_timeout: float = DIRECTIONS_TIMEOUT_S,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._headers = {
            "Authorization": api_key,
            "Content-Type": "application/json",
            "Accept": "application/json, application/geo+json",
        }
        self._snap_timeout = snap_timeout
        self._directions_timeout = directions_timeout
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient()

    @classmethod
    def from_settings(cls, settings: Settings) -> "OpenRouteServiceClient":
        return cls(
            settings.openrouteservice_api_key,
            base_url=settings.openrouteservice_base_url,
            snap_timeout=settings.snap_timeout_s,
            directions_timeout=settings.directions_timeout_s,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def snap(
        self,
        profile: str,
        locations: Sequence[Sequence[float]],
        radius: float,
    ) -> list[list[float] | None]:
        """Snaps ``[lon, lat]`` locations onto the ``profile`` network.

        Returns one entry per input location: the snapped ``[lon, lat]``, or
        None where nothing routable lies within ``radius`` metres.
        """
        data = await self._post(
            f"/v2/snap/{profile}/json",
            {"locations": [list(loc) for loc in locations], "radius": radius},
            timeout=self._snap_timeout,
        )
        snapped: list[list[float] | None] = []
        for item in data.get("locations") or []:
            location = item.get("location") if isinstance(item, dict) else None
            snapped.append(location)
        return snapped

    async def directions(self, profile: str, body: dict[str, Any]) -> dict[str, Any]:
        """Requests a GeoJSON route; returns the FeatureCollection as a dict."""
        return await self._post(
            f"/v2/directions/{profile}/geojson",
            body,
            timeout=self._directions_timeout,
        )

    async def _post(
        self, path: str, body: dict[str, Any], *, timeout: float
    ) -> dict[str, Any]:
        url = f"{self._base_url}{path}"
        try:
            response = await self._http.post(
                url, json=body, headers=self._headers, timeout=timeout
            )
        except httpx.RequestError as exc:
            raise OpenRouteServiceError(
                f"ORS request to {path} failed: {exc!r}"
            ) from exc

        if response.is_error:
            message = _error_message(response)
            logger.error("ORS %s returned %d: %s", path, response.status_code, message)
            raise OpenRouteServiceError(message, status_code=response.status_code)

        try:
            data = response.json()
        except ValueError as exc:
            raise OpenRouteServiceError(
                f"ORS {path} returned invalid JSON",
                status_code=response.status_code,
            ) from exc
        if not isinstance(data, dict):
            raise OpenRouteServiceError(
                f"ORS {path} returned unexpected payload",
                status_code=response.status_code,
            )
        return data
