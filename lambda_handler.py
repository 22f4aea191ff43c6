"""
AWS Lambda handler for Dealroom Negotiation API.

This is the production entry point for AWS Lambda deployments.
For local development, use main.py (Flask app) instead.
"""

import json
import logging
import re

from dealroom import NegotiationEngine
from dealroom.config import Settings
from dealroom.errors import DealError
from dealroom.models import ConnectionRecord
from dealroom.store import StorageError

settings = Settings.from_env()

# Configure logging
logger = logging.getLogger()
logger.setLevel(getattr(logging, settings.log_level, logging.INFO))

# Environment (dev, staging, prod)
ENVIRONMENT = settings.environment

# Initialize engine (reused across warm invocations)
engine = NegotiationEngine(settings=settings)

# CORS headers for API Gateway
CORS_HEADERS = {
    "Content-Type": "application/json",
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "Content-Type,Authorization",
    "Access-Control-Allow-Methods": "GET,POST,OPTIONS",
}

DEAL_PATH = re.compile(r"^/deals/(?P<deal_id>[^/]+)$")
DEAL_ACTION_PATH = re.compile(r"^/deals/(?P<deal_id>[^/]+)/(?P<action>counter|accept|decline)$")
USER_DEALS_PATH = re.compile(r"^/users/(?P<user_id>[^/]+)/deals$")


def _response(status_code, body):
    return {"statusCode": status_code, "headers": CORS_HEADERS, "body": json.dumps(body)}


def lambda_handler(event, context):
    """
    Main Lambda entry point.

    Handles API Gateway events for:
    - GET /health, GET /api
    - POST /deals
    - GET /deals/{deal_id}
    - GET /users/{user_id}/deals
    - POST /deals/{deal_id}/counter|accept|decline
    - POST /connections
    - OPTIONS (CORS preflight)
    """
    # Handle CORS preflight
    http_method = event.get("httpMethod") or event.get("requestContext", {}).get("http", {}).get("method", "")
    if http_method == "OPTIONS":
        return {"statusCode": 200, "headers": CORS_HEADERS, "body": ""}

    # Get path (supports both REST API and HTTP API formats)
    path = event.get("path") or event.get("rawPath", "")

    # Route to appropriate handler
    if path == "/health" and http_method == "GET":
        return handle_health()
    elif path == "/api" and http_method == "GET":
        return handle_api_info()
    elif path == "/deals" and http_method == "POST":
        return handle_deal_action(event, "create")
    elif path == "/connections" and http_method == "POST":
        return handle_register_connection(event)

    action_match = DEAL_ACTION_PATH.match(path)
    if action_match and http_method == "POST":
        return handle_deal_action(event, action_match.group("action"), action_match.group("deal_id"))

    deal_match = DEAL_PATH.match(path)
    if deal_match and http_method == "GET":
        return handle_get_deal(event, deal_match.group("deal_id"))

    user_match = USER_DEALS_PATH.match(path)
    if user_match and http_method == "GET":
        return handle_user_deals(user_match.group("user_id"))

    return _response(404, {"error": "Not found", "path": path})


def handle_health():
    """Health check endpoint."""
    return _response(200, {"status": "healthy", "environment": ENVIRONMENT})


def handle_api_info():
    """API information endpoint."""
    return _response(
        200,
        {
            "status": "ok",
            "message": "Dealroom Negotiation API",
            "version": "1.0",
            "environment": ENVIRONMENT,
            "runtime": "AWS Lambda",
            "endpoints": {
                "create_deal": "/deals [POST]",
                "get_deal": "/deals/{deal_id} [GET]",
                "user_deals": "/users/{user_id}/deals [GET]",
                "counter": "/deals/{deal_id}/counter [POST]",
                "accept": "/deals/{deal_id}/accept [POST]",
                "decline": "/deals/{deal_id}/decline [POST]",
                "connections": "/connections [POST]",
                "health": "/health [GET]",
            },
        },
    )


def _parse_body(event):
    body = event.get("body", "")
    if isinstance(body, str):
        if not body:
            return None
        # Handle base64 encoded body (API Gateway)
        if event.get("isBase64Encoded"):
            import base64

            body = base64.b64decode(body).decode("utf-8")
        return json.loads(body)
    return body


def _run(action, fn):
    """Execute an engine call, mapping failures onto API Gateway responses."""
    try:
        return fn()

    except json.JSONDecodeError as e:
        logger.error(f"JSON parse error: {str(e)}")
        return _response(400, {"error": f"Invalid JSON: {str(e)}", "status": "failed"})

    except DealError as e:
        # Negotiation rule violations carry their own status and message
        logger.warning(f"{action} rejected ({e.code}): {e.message}")
        return _response(e.http_status, e.to_dict())

    except StorageError as e:
        logger.error(f"{action} storage error: {str(e)}")
        return _response(
            503, {"error": "Deal storage is unavailable, please retry", "status": "unavailable", "retryable": e.retryable}
        )

    except (ValueError, KeyError, TypeError) as e:
        # Validation errors (missing fields, invalid types, etc.)
        logger.error(f"Validation error: {str(e)}")
        return _response(400, {"error": f"Validation error: {str(e)}", "status": "validation_failed"})

    except Exception as e:
        # Unexpected errors - log details but return generic message to avoid information disclosure
        logger.error(f"Unexpected error during {action}: {str(e)}", exc_info=True)
        return _response(500, {"error": "An unexpected error occurred during processing", "status": "failed"})


def handle_deal_action(event, action, deal_id=None):
    """Create, counter, accept or decline a deal."""

    def run():
        input_data = _parse_body(event)
        if not input_data:
            return _response(400, {"error": "No input data provided", "status": "failed"})

        input_data["action"] = action
        if deal_id is not None:
            input_data["deal_id"] = deal_id

        logger.info(f"Processing {action} for deal: {deal_id or 'new'}")
        result = engine.process_action_from_dict(input_data)
        logger.info(f"Deal {result['deal_id']} {action} processed: now {result['status']}")

        return _response(201 if action == "create" else 200, result)

    return _run(action, run)


def handle_get_deal(event, deal_id):
    def run():
        params = event.get("queryStringParameters") or {}
        deal = engine.get_deal(deal_id)
        return _response(200, engine.deal_to_dict(deal, viewer_id=params.get("user_id")))

    return _run("get_deal", run)


def handle_user_deals(user_id):
    def run():
        deals = engine.get_deals_for_user(user_id)
        return _response(200, {"user_id": user_id, "deals": [engine.deal_to_dict(d, viewer_id=user_id) for d in deals]})

    return _run("user_deals", run)


def handle_register_connection(event):
    """Register a connection with the engine's connection gate."""

    def run():
        input_data = _parse_body(event)
        if not input_data:
            return _response(400, {"error": "No input data provided", "status": "failed"})

        record = ConnectionRecord.from_dict(input_data)
        engine.connection_gate.add(record)
        logger.info(f"Connection registered: {record.connection_id} ({record.status.value})")
        return _response(201, {"connection_id": record.connection_id, "status": record.status.value})

    return _run("register_connection", run)
