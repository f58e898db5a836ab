"""Error handling utilities for API responses."""

import logging
from typing import Dict, Any, Tuple
from datetime import datetime, timezone
from flask import Flask, request, jsonify
from pydantic import ValidationError
from werkzeug.exceptions import HTTPException

from aws_service_broker.exceptions import BrokerError, format_error_response

logger = logging.getLogger(__name__)


class ErrorResponseFormatter:
    """Formats error responses for the Open Service Broker API."""

    @staticmethod
    def format_osb_error(error: Exception) -> Tuple[Dict[str, Any], int]:
        """Format error for Open Service Broker API compliance.

        Returns:
            Tuple of (response_dict, http_status_code)
        """
        if isinstance(error, BrokerError):
            return format_error_response(error), error.status_code

        if isinstance(error, ValidationError):
            fields = ", ".join(
                ".".join(str(part) for part in e['loc']) for e in error.errors()
            )
            return {'description': f"Invalid request body: {fields}"}, 400

        if isinstance(error, HTTPException):
            return {'description': error.description or error.name}, error.code or 500

        return format_error_response(error), 500


def register_error_handlers(app: Flask):
    """Register global error handlers for Flask app.

    Args:
        app: Flask application instance
    """

    @app.errorhandler(BrokerError)
    def handle_broker_error(error: BrokerError):
        """Handle broker errors."""
        if error.status_code >= 500:
            logger.error(f"Broker error on {request.method} {request.path}: {error}")
        else:
            logger.warning(f"Rejected {request.method} {request.path}: {error}")

        response, status = ErrorResponseFormatter.format_osb_error(error)
        return jsonify(response), status

    @app.errorhandler(ValidationError)
    def handle_validation_error(error: ValidationError):
        """Handle malformed request bodies."""
        logger.warning(f"Validation error: {error}")

        response, status = ErrorResponseFormatter.format_osb_error(error)
        return jsonify(response), status

    @app.errorhandler(HTTPException)
    def handle_http_error(error: HTTPException):
        """Handle routing and protocol errors raised by Flask."""
        response, status = ErrorResponseFormatter.format_osb_error(error)
        return jsonify(response), status

    @app.errorhandler(Exception)
    def handle_generic_error(error: Exception):
        """Handle unexpected errors."""
        logger.error(f"Unexpected error: {error}", exc_info=True)

        response, status = ErrorResponseFormatter.format_osb_error(error)
        return jsonify(response), status


class RequestContextLogger:
    """Middleware to log request completion."""

    def __init__(self, app: Flask):
        """Initialize the middleware.

        Args:
            app: Flask application instance
        """
        self.app = app
        self.init_app(app)

    def init_app(self, app: Flask):
        """Initialize the middleware with the app."""

        @app.before_request
        def before_request():
            request.environ['aws_service_broker.start_time'] = datetime.now(timezone.utc)

        @app.after_request
        def after_request(response):
            """Log request completion."""
            start_time = request.environ.get('aws_service_broker.start_time')
            if start_time is not None:
                duration = (datetime.now(timezone.utc) - start_time).total_seconds()

                logger.info(
                    f"{request.method} {request.path} -> {response.status_code} "
                    f"({duration:.3f}s)"
                )

            return response
