import asyncio
import logging
from datetime import datetime, timezone

import httpx
import pydantic

from .errors import CityNotFound, CorruptedCall, DecodeError, ExternalProviderError
from .schemas import ForecastResult, OpenWeatherCurrent

logger = logging.getLogger(__name__)

OPENWEATHER_BASE_URL = "https://api.openweathermap.org"


class OpenWeatherClient:
    """
    Current weather by city name: https://openweathermap.org/current#name.

    One HTTP call per fetch, no retries. Every outcome other than a decodable
    2xx body is raised as a ForecastError subclass.
    """

    def __init__(
        self,
        api_token: str | None,
        base_url: str = OPENWEATHER_BASE_URL,
        timeout: float = 1.0,
    ):
        if not api_token:
            raise ValueError("invalid openweathermap api token")
        self.api_token = api_token
        self.timeout = timeout
        self.url = f"{base_url.rstrip('/')}/data/2.5/weather"
        # Per-phase httpx timeouts; fetch also bounds the whole call by self.timeout.
        self._client = httpx.AsyncClient(
            timeout=timeout,
            limits=httpx.Limits(max_keepalive_connections=15),
        )

    async def __aenter__(self) -> "OpenWeatherClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def fetch(self, city_name: str) -> ForecastResult:
        params = {"units": "metric", "q": city_name, "appid": self.api_token}

        logger.info("get forecast city=%s", city_name)
        try:
            resp = await asyncio.wait_for(self._client.get(self.url, params=params), self.timeout)
        except httpx.TransportError as exc:
            logger.warning("forecast call failed city=%s: %s", city_name, exc)
            raise CorruptedCall(f"forecast call for {city_name!r} failed: {exc}") from exc
        except asyncio.TimeoutError as exc:
            logger.warning("forecast call timed out city=%s after %ss", city_name, self.timeout)
            raise CorruptedCall(
                f"forecast call for {city_name!r} took longer than {self.timeout}s"
            ) from exc
        logger.info("forecast respond city=%s status=%s", city_name, resp.status_code)

        if resp.status_code == httpx.codes.NOT_FOUND:
            raise CityNotFound(f"city {city_name!r} not found")
        if resp.status_code in (httpx.codes.BAD_REQUEST, httpx.codes.BAD_GATEWAY):
            raise ExternalProviderError(
                f"provider rejected request: HTTP {resp.status_code}", resp.status_code
            )
        if not resp.is_success:
            raise ExternalProviderError(
                f"unexpected provider status: HTTP {resp.status_code}", resp.status_code
            )

        try:
            payload = OpenWeatherCurrent.model_validate_json(resp.content)
        except pydantic.ValidationError as exc:
            raise DecodeError(f"unmarshal response body: {exc}") from exc

        return ForecastResult.from_openweather(payload, made_at=datetime.now(timezone.utc))
