"""Fetch-evaluate-notify pass over every city that has registered users."""

import asyncio
import logging
from datetime import datetime

from alert_rules import evaluate_alert, ALERT_KIND
from data_fetcher import WeatherDataFetcher
from email_notifier import EmailNotifier
from storage import WeatherAlertDatabase
from models import CityInfo, Observation, PassSummary
from errors import DatabaseError, WeatherApiError, MailerError

logger = logging.getLogger(__name__)

INTER_CITY_DELAY_SECONDS = 1.0

class AlertPipeline:
    """Runs one pass: list cities, fetch, store, evaluate, notify, log.

    Failures are isolated per city and per user. A failed fetch, a store
    error while handling one city, a missing preferences row or a rejected
    email never stops the rest of the pass. Only a failure to list the
    cities themselves propagates to the caller.

    Store calls run on worker threads, off the event loop.
    """

    def __init__(
        self,
        database: WeatherAlertDatabase,
        fetcher: WeatherDataFetcher,
        notifier: EmailNotifier,
        inter_city_delay: float = INTER_CITY_DELAY_SECONDS
    ):
        self.database = database
        self.fetcher = fetcher
        self.notifier = notifier
        self.inter_city_delay = inter_city_delay

    async def run_once(self) -> PassSummary:
        """Execute one complete pass over the fan-out."""
        pass_start = datetime.now()
        logger.info(f"Starting weather fetch pass at {pass_start.strftime('%Y-%m-%d %H:%M:%S')}")

        cities = await asyncio.to_thread(self.database.list_distinct_user_cities)
        summary = PassSummary(cities=len(cities))
        logger.info(f"Found {len(cities)} unique cities to fetch")

        for index, city_info in enumerate(cities):
            await self._process_city(city_info, summary)

            # Rate limiting between cities
            if self.inter_city_delay > 0 and index < len(cities) - 1:
                await asyncio.sleep(self.inter_city_delay)

        elapsed = (datetime.now() - pass_start).total_seconds()
        logger.info(
            f"Pass complete in {elapsed:.1f}s: {summary.observations_stored}/{summary.cities} cities stored, "
            f"{summary.alerts_sent} alerts sent, {summary.alerts_failed} alerts failed"
        )
        if summary.failed_cities:
            logger.warning(f"Cities skipped this pass: {', '.join(summary.failed_cities)}")
        return summary

    async def _process_city(self, city_info: CityInfo, summary: PassSummary):
        logger.info(f"Fetching weather for {city_info.city}, {city_info.country}")

        try:
            observation = await self.fetcher.fetch_current_weather(city_info.city, city_info.country)
        except WeatherApiError as e:
            logger.error(f"Failed to fetch weather for {city_info.city}: {e}")
            summary.failed_cities.append(city_info.city)
            return

        try:
            await asyncio.to_thread(self.database.store_observation, observation)
            logger.info(
                f"Stored weather: {city_info.city} - {observation.temperature}°C, {observation.conditions}"
            )
            users = await asyncio.to_thread(
                self.database.list_users_in_city, city_info.city, city_info.country
            )
        except DatabaseError as e:
            logger.error(f"Database error while processing {city_info.city}, skipping city: {e}")
            summary.failed_cities.append(city_info.city)
            return

        summary.observations_stored += 1

        for user in users:
            await self._notify_user(user, city_info, observation, summary)

    async def _notify_user(self, user, city_info: CityInfo, observation: Observation, summary: PassSummary):
        try:
            prefs = await asyncio.to_thread(self.database.get_preferences, user.id)
        except DatabaseError as e:
            logger.error(f"Failed to load preferences for {user.email}: {e}")
            return

        if prefs is None:
            logger.warning(f"No preferences found for {user.email}, skipping")
            return

        alert_message = evaluate_alert(observation, prefs)
        if alert_message is None:
            return

        logger.info(f"Sending alert to {user.email}: {alert_message}")
        try:
            await self.notifier.send_weather_alert(user.email, city_info.city, alert_message)
        except MailerError as e:
            logger.error(f"Failed to send alert to {user.email}: {e}")
            summary.alerts_failed += 1
            return

        summary.alerts_sent += 1
        try:
            await asyncio.to_thread(self.database.log_alert, user.id, ALERT_KIND, alert_message)
        except DatabaseError as e:
            logger.error(f"Alert sent to {user.email} but could not be logged: {e}")
            return

        logger.info(f"Alert sent to {user.email}")
