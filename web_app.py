#!/usr/bin/env python3
"""
Weather Alert System - REST API
JSON endpoints for user registration, preferences, weather and alert history,
plus a manual trigger for the weather fetch pass.
"""

import logging
import os
from datetime import datetime, timezone
from typing import Any, Callable, Coroutine, Optional

from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException

from email_notifier import EmailNotifier
from errors import AppError, NotFoundError, ValidationError
from models import PreferencesUpdate
from storage import WeatherAlertDatabase

logger = logging.getLogger(__name__)

SERVICE_NAME = "Weather Alert System"
# Resolved against the working directory, not the installed module
DEFAULT_STATIC_FOLDER = "static"

# Takes a coroutine and runs it detached from the request
BackgroundSubmitter = Callable[[Coroutine], Any]


def success(data: Any = None, message: str = "", status: int = 200):
    return jsonify({'success': True, 'data': data, 'message': message}), status


def failure(message: str, status: int):
    return jsonify({'success': False, 'error': message}), status


def parse_limit(default: int) -> int:
    raw = request.args.get('limit')
    if raw is None:
        return default
    try:
        limit = int(raw)
    except ValueError:
        raise ValidationError("limit must be a positive integer")
    if limit < 1:
        raise ValidationError("limit must be a positive integer")
    return limit


def json_body() -> Any:
    payload = request.get_json(silent=True)
    if payload is None:
        raise ValidationError("Request body must be valid JSON")
    return payload


async def _send_welcome_quietly(notifier: EmailNotifier, email: str, city: str):
    try:
        await notifier.send_welcome_email(email, city)
    except AppError as e:
        logger.error(f"Failed to send welcome email to {email}: {e}")


def create_app(
    database: WeatherAlertDatabase,
    notifier: Optional[EmailNotifier],
    submit: BackgroundSubmitter,
    run_pass: Optional[Callable[[], Coroutine]] = None,
    static_folder: str = DEFAULT_STATIC_FOLDER
) -> Flask:
    """Build the API application.

    ``submit`` hands a coroutine to the scheduler loop; ``run_pass`` builds
    the coroutine for one pipeline pass. Files under ``static_folder`` are
    served at ``/static/``.
    """
    app = Flask(__name__, static_folder=os.path.abspath(static_folder), static_url_path="/static")
    app.json.sort_keys = False
    app.json.ensure_ascii = False

    @app.after_request
    def add_security_headers(resp):
        resp.headers.setdefault("X-Content-Type-Options", "nosniff")
        resp.headers.setdefault("X-Frame-Options", "DENY")
        resp.headers.setdefault("Referrer-Policy", "no-referrer")
        return resp

    @app.after_request
    def log_request(resp):
        logger.info(f"{request.remote_addr} \"{request.method} {request.full_path.rstrip('?')}\" {resp.status_code}")
        return resp

    @app.errorhandler(AppError)
    def handle_app_error(e: AppError):
        if e.status_code >= 500:
            logger.error(f"{request.method} {request.path} failed: {e}")
        return failure(e.public_message, e.status_code)

    @app.errorhandler(HTTPException)
    def handle_http_error(e: HTTPException):
        return failure(e.description or e.name, e.code or 500)

    @app.errorhandler(Exception)
    def handle_unexpected_error(e: Exception):
        logger.error(f"Unhandled error on {request.method} {request.path}: {e}", exc_info=True)
        return failure("Internal error: unexpected server error", 500)

    # =========================================================================
    # Health
    # =========================================================================

    @app.route('/api/health')
    def health_check():
        return jsonify({
            'status': 'healthy',
            'service': SERVICE_NAME,
            'timestamp': datetime.now(timezone.utc).isoformat()
        })

    # =========================================================================
    # Users
    # =========================================================================

    @app.route('/api/users', methods=['POST'])
    def create_user():
        payload = json_body()
        if not isinstance(payload, dict):
            raise ValidationError("Request body must be a JSON object")

        user = database.create_user(
            payload.get('email'), payload.get('city'), payload.get('country')
        )

        message = "User registered successfully."
        if notifier is not None:
            try:
                submit(_send_welcome_quietly(notifier, user.email, user.city))
                message = "User registered successfully. Welcome email queued."
            except AppError as e:
                logger.error(f"Could not schedule welcome email for {user.email}: {e}")

        return success(user.to_dict(), message, 201)

    @app.route('/api/users', methods=['GET'])
    def get_all_users():
        users = database.list_users()
        return success([u.to_dict() for u in users], "Users fetched successfully")

    @app.route('/api/users/<user_id>')
    def get_user(user_id: str):
        user = database.get_user_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found")
        preferences = database.get_preferences(user.id)
        return success({
            'user': user.to_dict(),
            'preferences': preferences.to_dict() if preferences else None
        }, "User fetched successfully")

    @app.route('/api/users/<user_id>/preferences', methods=['GET'])
    def get_preferences(user_id: str):
        preferences = database.get_preferences(user_id)
        if preferences is None:
            raise NotFoundError("Preferences not found")
        return success(preferences.to_dict(), "Preferences fetched")

    @app.route('/api/users/<user_id>/preferences', methods=['PUT'])
    def update_preferences(user_id: str):
        update = PreferencesUpdate.from_json(json_body())

        current = database.get_preferences(user_id)
        if current is None:
            raise NotFoundError("Preferences not found")
        update.check_bounds(current)

        preferences = database.update_preferences(user_id, update)
        return success(preferences.to_dict(), "Preferences updated successfully")

    @app.route('/api/users/<user_id>/alerts')
    def get_user_alerts(user_id: str):
        limit = parse_limit(50)
        alerts = database.get_user_alerts(user_id, limit)
        return success([a.to_dict() for a in alerts], "Alerts fetched")

    # =========================================================================
    # Weather
    # =========================================================================

    @app.route('/api/weather/current/<city>')
    def get_current_weather(city: str):
        observation = database.get_latest_observation(city)
        if observation is None:
            raise NotFoundError(f"No weather data found for {city}")
        return success(observation.to_dict(), "Weather data fetched")

    @app.route('/api/weather/history/<city>')
    def get_weather_history(city: str):
        limit = parse_limit(24)
        history = database.get_observation_history(city, limit)
        return success([o.to_dict() for o in history], "Weather history fetched")

    @app.route('/api/weather/fetch', methods=['POST'])
    def manual_fetch_weather():
        if run_pass is None:
            raise AppError("Weather fetch is not available")
        logger.info("Manual weather fetch triggered via API")
        submit(run_pass())
        return success(None, "Weather fetch started in background", 202)

    # =========================================================================
    # Alerts
    # =========================================================================

    @app.route('/api/alerts')
    def get_all_alerts():
        limit = parse_limit(100)
        alerts = database.get_all_alerts(limit)
        return success([a.to_dict() for a in alerts], "All alerts fetched")

    return app
