"""Client for the forecast backend: URL building, auth headers and response checks."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, List, Optional
from urllib.parse import quote, urlencode

from forecast_sync.errors import ForecastParseError, HttpStatusError
from forecast_sync.fetcher import FetchResponse, RetryingFetcher
from utils.logging_utils import get_tagged_logger, mask_url

logger = get_tagged_logger(__name__, tag="forecast_client")

BODY_PREVIEW_CHARS = 200


@dataclass
class LocationForecast:
    """Daily forecast for a single named location."""
    location_name: str
    location_description: str
    forecast: List[Any] = field(default_factory=list)


@dataclass
class HourlyForecast:
    """Hourly breakdown for one location on one date (YYYY-MM-DD)."""
    location: str
    location_description: str
    date: str
    sunrise: Optional[str] = None
    sunrise_epoch: Optional[int] = None
    sunset: Optional[str] = None
    sunset_epoch: Optional[int] = None
    hours: List[Any] = field(default_factory=list)


def check_response(response: FetchResponse) -> None:
    """Raise HttpStatusError for non-2xx and ForecastParseError for non-JSON bodies."""
    if not response.ok:
        body = response.text
        logger.error(
            "Error response body (first 500 chars): %s",
            body[:500],
            extra={"status_code": response.status_code, "url": mask_url(response.url)},
        )
        raise HttpStatusError(response.status_code, response.reason, body[:BODY_PREVIEW_CHARS])

    content_type = response.content_type
    if "application/json" not in content_type.lower():
        body = response.text
        logger.error("Unexpected content-type: %s", content_type or "<missing>")
        raise ForecastParseError(
            f"Expected JSON but got {content_type or 'no content-type'}. Body: {body[:BODY_PREVIEW_CHARS]}"
        )


def extract_data(response: FetchResponse) -> Any:
    """Validate a response and return the `data` member of its JSON envelope."""
    check_response(response)
    try:
        envelope = response.json()
    except ValueError as exc:
        raise ForecastParseError(f"Malformed JSON body: {exc}") from exc
    if not isinstance(envelope, dict) or "data" not in envelope:
        raise ForecastParseError("Response body is missing the 'data' field")
    return envelope["data"]


class ForecastApiClient:
    """Typed access to the /forecasts endpoints through a RetryingFetcher."""

    def __init__(
        self,
        base_url: str,
        fetcher: RetryingFetcher,
        *,
        token: str | None = None,
        data_source: str = "real",
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.fetcher = fetcher
        self.token = token
        self.data_source = data_source

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _get_data(self, url: str) -> Any:
        response = self.fetcher.fetch(url, headers=self._headers())
        logger.debug(
            "Response received",
            extra={"status_code": response.status_code, "content_type": response.content_type, "bytes": len(response.content)},
        )
        return extract_data(response)

    def forecast_url(self, data_source: str | None = None) -> str:
        return f"{self.base_url}/forecasts/{quote(data_source or self.data_source, safe='')}"

    def fetch_forecast(self, data_source: str | None = None) -> Any:
        """Fetch the full regional forecast; the payload is returned untouched."""
        return self._get_data(self.forecast_url(data_source))

    def fetch_location_forecast(self, location_name: str) -> LocationForecast:
        """Fetch the daily forecast for one location."""
        url = (
            f"{self.base_url}/forecasts/location/"
            f"{quote(location_name, safe='')}/{quote(self.data_source, safe='')}"
        )
        data = self._get_data(url)
        try:
            location = data["location"]
            return LocationForecast(
                location_name=location["name"],
                location_description=location.get("description", ""),
                forecast=list(data.get("forecast") or []),
            )
        except (KeyError, TypeError, AttributeError) as exc:
            raise ForecastParseError(f"Unexpected location forecast shape: {exc}") from exc

    def fetch_hourly_forecast(self, location_name: str, date: str) -> HourlyForecast:
        """Fetch hourly data for a location and keep only the requested date."""
        url = (
            f"{self.base_url}/forecasts/hourly/{quote(self.data_source, safe='')}?"
            f"{urlencode({'location': location_name})}"
        )
        data = self._get_data(url)
        try:
            location = data["location"]
            if not isinstance(location, dict):
                raise TypeError("'location' is not an object")
            days = data.get("days") or []
            day = next((d for d in days if d.get("datetime") == date), None)
        except (KeyError, TypeError, AttributeError) as exc:
            raise ForecastParseError(f"Unexpected hourly forecast shape: {exc}") from exc

        if day is None:
            logger.info("No hourly data for requested date", extra={"location": location_name, "date": date})
            day = {}
        return HourlyForecast(
            location=location.get("name", location_name),
            location_description=location.get("description", ""),
            date=date,
            sunrise=day.get("sunrise"),
            sunrise_epoch=day.get("sunriseEpoch"),
            sunset=day.get("sunset"),
            sunset_epoch=day.get("sunsetEpoch"),
            hours=list(day.get("hours") or []),
        )
