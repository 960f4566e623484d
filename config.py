"""Configuration management for the weather alert service."""

import os
from dataclasses import dataclass
from typing import Optional
from dotenv import load_dotenv

from errors import ConfigError

load_dotenv()

DEFAULT_FETCH_CRON = "0 0 */2 * * *"
OPENWEATHER_CURRENT_URL = "https://api.openweathermap.org/data/2.5/weather"

@dataclass
class WeatherConfig:
    """Weather API configuration."""
    api_key: str
    api_url: str
    request_timeout_seconds: float

@dataclass
class EmailConfig:
    """SMTP configuration. The username doubles as the sender address."""
    smtp_host: str
    smtp_port: int
    smtp_use_ssl: bool
    smtp_username: str
    smtp_password: str
    sender_name: str

@dataclass
class SystemConfig:
    """System operation configuration."""
    database_url: str
    max_db_connections: int
    fetch_cron: str
    inter_city_delay_seconds: float
    log_level: str
    log_file: Optional[str]

@dataclass
class WebAppConfig:
    """Web application configuration."""
    host: str
    port: int

@dataclass
class Config:
    """Main configuration container."""
    weather: WeatherConfig
    email: EmailConfig
    system: SystemConfig
    webapp: WebAppConfig

def _require(name: str) -> str:
    value = os.getenv(name)
    if not value:
        raise ConfigError(f"{name} not set")
    return value

def _int_or_default(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default

def _float_or_default(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default

def load_config() -> Config:
    """Load configuration from environment variables."""
    return Config(
        weather=WeatherConfig(
            api_key=_require("WEATHER_API_KEY"),
            api_url=os.getenv("WEATHER_API_URL", OPENWEATHER_CURRENT_URL),
            request_timeout_seconds=_float_or_default("WEATHER_API_TIMEOUT_SECONDS", 30.0)
        ),
        email=EmailConfig(
            smtp_host=os.getenv("SMTP_HOST", "smtp.gmail.com"),
            smtp_port=_int_or_default("SMTP_PORT", 587),
            smtp_use_ssl=os.getenv("SMTP_USE_SSL", "false").lower() == "true",
            smtp_username=_require("SMTP_USERNAME"),
            smtp_password=_require("SMTP_PASSWORD"),
            sender_name=os.getenv("SMTP_SENDER_NAME", "Weather Alert System")
        ),
        system=SystemConfig(
            database_url=_require("DATABASE_URL"),
            max_db_connections=_int_or_default("DB_MAX_CONNECTIONS", 10),
            fetch_cron=os.getenv("FETCH_CRON", DEFAULT_FETCH_CRON),
            inter_city_delay_seconds=_float_or_default("INTER_CITY_DELAY_SECONDS", 1.0),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            log_file=os.getenv("LOG_FILE", "weather_alerts.log") or None
        ),
        webapp=WebAppConfig(
            host=os.getenv("HOST", "0.0.0.0"),
            port=_int_or_default("PORT", 8080)
        )
    )
