"""Alert rule evaluation.

``evaluate_alert`` decides whether an observation should alert a user. It is
a pure function and performs no I/O.
Rules are checked in a fixed order and the first match wins, so a user gets
at most one message per observation:

1. temperature above ``max_temp``
2. temperature below ``min_temp``
3. rain in the condition category
4. snow in the condition category
5. storm or thunder in the condition category
"""

from typing import Optional

from models import Observation, Preferences

# Recorded for every alert regardless of which rule fired; existing alert
# logs rely on this label.
ALERT_KIND = "temperature"


def evaluate_alert(observation: Observation, preferences: Preferences) -> Optional[str]:
    """Return the alert message for the first matching rule, or None."""
    temp = observation.temperature
    conditions = observation.conditions.lower()

    if preferences.max_temp is not None and temp > preferences.max_temp:
        return (
            f"🌡️ High temperature alert! Current: {temp:.1f}°C "
            f"(Your limit: {preferences.max_temp}°C)"
        )

    if preferences.min_temp is not None and temp < preferences.min_temp:
        return (
            f"🥶 Low temperature alert! Current: {temp:.1f}°C "
            f"(Your limit: {preferences.min_temp}°C)"
        )

    if preferences.alert_on_rain and "rain" in conditions:
        return f"☔ Rain alert! Current conditions: {observation.conditions}"

    if preferences.alert_on_snow and "snow" in conditions:
        return f"❄️ Snow alert! Current conditions: {observation.conditions}"

    if preferences.alert_on_storm and ("storm" in conditions or "thunder" in conditions):
        return f"⚡ Storm alert! Current conditions: {observation.conditions}"

    return None
