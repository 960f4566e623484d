"""Weather data fetching module (OpenWeatherMap current conditions)."""

import asyncio
import aiohttp
import logging
from datetime import datetime, timezone
from typing import Optional, Dict, Any

from models import Observation
from config import WeatherConfig
from errors import WeatherTransportError, WeatherProtocolError

logger = logging.getLogger(__name__)

class WeatherDataFetcher:
    """Fetches current conditions for a city.

    One ``aiohttp.ClientSession`` is created on first use and reused for
    every request until ``close()``. Requests are never retried here; pacing
    between cities is the pipeline's job.
    """

    def __init__(self, config: WeatherConfig):
        """Initialize fetcher with configuration."""
        self.config = config
        self.session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self):
        """Async context manager entry."""
        self._get_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            connector = aiohttp.TCPConnector(
                limit=10,
                ttl_dns_cache=300,  # Cache DNS for 5 minutes
                use_dns_cache=True,
                keepalive_timeout=30
            )
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.request_timeout_seconds, connect=10),
                connector=connector
            )
        return self.session

    async def close(self):
        if self.session is not None and not self.session.closed:
            await self.session.close()
        self.session = None

    async def fetch_current_weather(self, city: str, country: str) -> Observation:
        """Fetch current conditions in metric units for ``city, country``."""
        params = {
            "q": f"{city},{country}",
            "appid": self.config.api_key,
            "units": "metric"
        }

        logger.info(f"Fetching weather from API: {city}, {country}")

        session = self._get_session()
        try:
            async with session.get(self.config.api_url, params=params) as response:
                if not 200 <= response.status < 300:
                    try:
                        body = await response.text()
                    except (aiohttp.ClientError, UnicodeDecodeError):
                        body = None
                    raise WeatherProtocolError(response.status, body)
                data = await response.json(content_type=None)
        except (asyncio.TimeoutError, aiohttp.ClientError) as e:
            raise WeatherTransportError(f"Request failed: {e}") from e
        except ValueError as e:
            raise WeatherTransportError(f"Failed to parse response: {e}") from e

        observation = self._parse_openweather_data(data)
        logger.info(
            f"Weather fetched: {observation.city} - {observation.temperature}°C, {observation.conditions}"
        )
        return observation

    def _parse_openweather_data(self, data: Dict[str, Any]) -> Observation:
        """Map an OpenWeather response onto an Observation."""
        try:
            main = data["main"]
            weather = data.get("weather") or []
            first = weather[0] if weather else {}

            return Observation(
                city=str(data["name"]),
                country=str(data["sys"]["country"]).upper(),
                temperature=float(main["temp"]),
                feels_like=float(main["feels_like"]),
                conditions=first.get("main") or "Unknown",
                description=first.get("description") or "No description",
                humidity=int(main["humidity"]),
                wind_speed=float(data["wind"]["speed"]),
                pressure=int(main["pressure"]),
                fetched_at=datetime.now(timezone.utc)
            )
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise WeatherTransportError(f"Failed to parse response: missing or invalid field {e}") from e
