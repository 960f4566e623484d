import pytest
from datetime import datetime, timezone

from config import load_config
from errors import MailerError
from models import Observation
from storage import WeatherAlertDatabase


TEST_ENV = {
    "DATABASE_URL": "sqlite:///unused.db",
    "WEATHER_API_KEY": "test-key",
    "SMTP_USERNAME": "alerts@example.com",
    "SMTP_PASSWORD": "secret",
    "SMTP_HOST": "smtp.example.com",
    "SMTP_PORT": "587",
    "LOG_FILE": "",
}


def make_observation(city="Berlin", country="DE", temperature=20.0, conditions="Clear", **overrides):
    data = dict(
        city=city,
        country=country,
        temperature=temperature,
        feels_like=temperature - 1.0,
        conditions=conditions,
        description=conditions.lower(),
        humidity=60,
        wind_speed=3.5,
        pressure=1013,
        fetched_at=datetime.now(timezone.utc),
    )
    data.update(overrides)
    return Observation(**data)


class FakeFetcher:
    """Returns canned observations, or raises the canned error, per city."""

    def __init__(self, results):
        self.results = results
        self.calls = []

    async def fetch_current_weather(self, city, country):
        self.calls.append((city, country))
        result = self.results[city]
        if isinstance(result, Exception):
            raise result
        return result


class FakeNotifier:
    """Records sent emails; recipients in ``fail_for`` raise MailerError."""

    def __init__(self, fail_for=()):
        self.fail_for = set(fail_for)
        self.alerts = []
        self.welcomes = []
        self.tests = []

    async def send_weather_alert(self, to, city, alert_message):
        if to in self.fail_for:
            raise MailerError("Failed to send email: simulated rejection")
        self.alerts.append((to, city, alert_message))

    async def send_welcome_email(self, to, city):
        if to in self.fail_for:
            raise MailerError("Failed to send email: simulated rejection")
        self.welcomes.append((to, city))

    async def send_test_email(self, to, subject="Weather Alert Test"):
        self.tests.append((to, subject))

    def close(self):
        pass


@pytest.fixture
def env(monkeypatch):
    for key, value in TEST_ENV.items():
        monkeypatch.setenv(key, value)
    return TEST_ENV


@pytest.fixture
def config(env):
    return load_config()


@pytest.fixture
def database(tmp_path):
    db = WeatherAlertDatabase(f"sqlite:///{tmp_path / 'weather_alerts.db'}")
    db.init_database()
    return db
