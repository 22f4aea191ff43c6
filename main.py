from flask import Flask, request, jsonify
from flask_cors import CORS
from dealroom import NegotiationEngine
from dealroom.config import Settings
from dealroom.errors import DealError
from dealroom.models import ConnectionRecord
from dealroom.store import StorageError
import logging

settings = Settings.from_env()

# Configure logging
logging.basicConfig(level=getattr(logging, settings.log_level, logging.INFO))
logger = logging.getLogger(__name__)

app = Flask(__name__)

# Enable CORS for all routes (the founder and investor dashboards call the API from the browser)
CORS(app)

# Initialize the negotiation engine (in-memory store and connection gate)
engine = NegotiationEngine(settings=settings)


def _error(message, status, http_status, **extra):
    body = {"error": message, "status": status}
    body.update(extra)
    return jsonify(body), http_status


def _handle(action, fn):
    """Run one engine call and map failures onto HTTP responses."""
    try:
        return fn()

    except DealError as e:
        # Negotiation rule violations: tell the party exactly what blocked them
        logger.warning(f"{action} rejected ({e.code}): {e.message}")
        return jsonify(e.to_dict()), e.http_status

    except StorageError as e:
        logger.error(f"{action} storage error: {str(e)}")
        return _error("Deal storage is unavailable, please retry", "unavailable", 503, retryable=e.retryable)

    except (ValueError, KeyError, TypeError) as e:
        logger.error(f"{action} validation error: {str(e)}")
        return _error(f"Validation error: {str(e)}", "validation_failed", 400)

    except Exception as e:
        logger.error(f"Unexpected error during {action}: {str(e)}", exc_info=True)
        return _error("An unexpected error occurred during processing", "failed", 500)


def _json_body():
    input_data = request.get_json(force=True, silent=True)
    if not input_data:
        raise ValueError("No input data provided")
    return input_data


@app.route("/api", methods=["GET"])
def api_info():
    """API information endpoint"""
    return jsonify({
        "status": "ok",
        "message": "Dealroom Negotiation API",
        "version": "1.0",
        "environment": settings.environment,
        "endpoints": {
            "create_deal": "/deals [POST]",
            "get_deal": "/deals/<deal_id> [GET]",
            "user_deals": "/users/<user_id>/deals [GET]",
            "counter": "/deals/<deal_id>/counter [POST]",
            "accept": "/deals/<deal_id>/accept [POST]",
            "decline": "/deals/<deal_id>/decline [POST]",
            "connections": "/connections [POST]",
            "health": "/health [GET]"
        }
    }), 200


@app.route("/health", methods=["GET"])
def health():
    """Health check for monitoring"""
    return jsonify({"status": "healthy"}), 200


@app.route("/connections", methods=["POST"])
def register_connection():
    """Register a connection with the in-memory gate (local development only)"""
    def run():
        record = ConnectionRecord.from_dict(_json_body())
        engine.connection_gate.add(record)
        logger.info(f"Connection registered: {record.connection_id} ({record.status.value})")
        return jsonify({"connection_id": record.connection_id, "status": record.status.value}), 201

    return _handle("register_connection", run)


@app.route("/deals", methods=["POST"])
def create_deal():
    """Create a new offer or ask"""
    def run():
        input_data = _json_body()
        input_data["action"] = "create"
        result = engine.process_action_from_dict(input_data)
        logger.info(f"Deal created: {result['deal_id']}")
        return jsonify(result), 201

    return _handle("create_deal", run)


@app.route("/deals/<deal_id>", methods=["GET"])
def get_deal(deal_id):
    """Fetch one deal; ?user_id= adds the viewer's perspective"""
    def run():
        deal = engine.get_deal(deal_id)
        return jsonify(engine.deal_to_dict(deal, viewer_id=request.args.get("user_id"))), 200

    return _handle("get_deal", run)


@app.route("/users/<user_id>/deals", methods=["GET"])
def user_deals(user_id):
    """All deals where the user is founder or investor"""
    def run():
        deals = engine.get_deals_for_user(user_id)
        return jsonify({
            "user_id": user_id,
            "deals": [engine.deal_to_dict(d, viewer_id=user_id) for d in deals]
        }), 200

    return _handle("user_deals", run)


@app.route("/deals/<deal_id>/<action>", methods=["POST"])
def deal_action(deal_id, action):
    """Counter, accept or decline a deal"""
    if action not in ("counter", "accept", "decline"):
        return _error("Not found", "failed", 404, path=request.path)

    def run():
        input_data = _json_body()
        input_data.update({"action": action, "deal_id": deal_id})
        result = engine.process_action_from_dict(input_data)
        logger.info(f"Deal {deal_id} {action}: now {result['status']}")
        return jsonify(result), 200

    return _handle(action, run)


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=settings.port, debug=False)
