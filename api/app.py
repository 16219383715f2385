# api/app.py
import logging
import os
import time
from collections import defaultdict
from functools import wraps
from typing import Dict, Optional, Tuple
import threading

from flask import Blueprint, Flask, current_app, jsonify, request
from flask_socketio import SocketIO, emit

from delegate import (
    Delegate,
    DelegateError,
    InvalidAmount,
    RuleNotActive,
    SetupFailed,
    Unauthorized,
    create_delegate,
    market_key,
)


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s %(levelname)s [%(name)s] %(message)s',
    handlers=[logging.StreamHandler()]
)
logger = logging.getLogger("delegate-api")

CALLER_HEADER = "X-Caller"

DEFAULT_CONFIG = {
    "SECRET_KEY": os.environ.get("DELEGATE_SECRET_KEY", "change-me"),
    "DEBUG": False,
    "TESTING": False,
    "DELEGATE_OWNER": os.environ.get("DELEGATE_OWNER", "owner"),
    "DELEGATE_TRADE_WALLET": os.environ.get("DELEGATE_TRADE_WALLET"),
    "DELEGATE_SWAP_CONTRACT": os.environ.get("DELEGATE_SWAP_CONTRACT", "swap"),
    "DELEGATE_REGISTRY": os.environ.get("DELEGATE_REGISTRY", "registry"),
    "DELEGATE_STAKING_TOKEN": os.environ.get("DELEGATE_STAKING_TOKEN", "AST"),
}

bp = Blueprint("delegate", __name__)

MARKET_NAMESPACE = "/market"


# Connection management
class ConnectionManager:
    """Tracks Socket.IO sessions and the markets each one follows."""

    def __init__(self):
        self.connections: Dict[str, Dict] = {}  # session_id -> connection_info
        self.market_subscribers: Dict[Tuple[str, str], set] = defaultdict(set)
        self.lock = threading.RLock()

    def add_connection(self, session_id: str, user_info: Dict = None):
        with self.lock:
            self.connections[session_id] = {
                "connected_at": time.time(),
                "user_info": user_info or {},
                "markets": set(),
            }

    def remove_connection(self, session_id: str):
        """Remove connection and clean up subscriptions."""
        with self.lock:
            info = self.connections.pop(session_id, None)
            if info:
                for market in info["markets"]:
                    self.market_subscribers[market].discard(session_id)

    def subscribe(self, session_id: str, market: Tuple[str, str]):
        with self.lock:
            self.market_subscribers[market].add(session_id)
            if session_id in self.connections:
                self.connections[session_id]["markets"].add(market)

    def unsubscribe(self, session_id: str, market: Tuple[str, str]):
        with self.lock:
            self.market_subscribers[market].discard(session_id)
            if session_id in self.connections:
                self.connections[session_id]["markets"].discard(market)

    def get_market_subscribers(self, market: Tuple[str, str]) -> set:
        with self.lock:
            return self.market_subscribers[market].copy()

    def get_connection_count(self) -> int:
        with self.lock:
            return len(self.connections)


def _delegate() -> Delegate:
    return current_app.extensions["delegate"]


def _connections() -> ConnectionManager:
    return current_app.extensions["delegate_connections"]


def _error(message: str, error_code: str, status: int, **extra):
    body = {"error": message, "error_code": error_code}
    body.update(extra)
    return jsonify(body), status


def _delegate_error(e: DelegateError):
    """Map a delegate failure to its JSON error response."""
    if isinstance(e, InvalidAmount):
        return _error(str(e), "INVALID_AMOUNT", 400, fields=e.fields)
    if isinstance(e, RuleNotActive):
        return _error(str(e), "RULE_NOT_ACTIVE", 404, rule_id=e.rule_id)
    if isinstance(e, Unauthorized):
        return _error(str(e), "UNAUTHORIZED", 403)
    return _error(str(e), "DELEGATE_ERROR", 400)


def validate_json_request(required_fields: list = None):
    """Decorator to validate JSON requests."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not request.is_json:
                return _error("Content-Type must be application/json", "INVALID_CONTENT_TYPE", 400)

            data = request.get_json(silent=True)
            if not isinstance(data, dict) or not data:
                return _error("Invalid JSON payload", "INVALID_JSON", 400)

            if required_fields:
                missing_fields = [name for name in required_fields if name not in data]
                if missing_fields:
                    return _error(f"Missing required fields: {missing_fields}", "MISSING_FIELDS", 400)

            return f(*args, **kwargs)
        return decorated_function
    return decorator


def require_query_params(*names):
    """Decorator rejecting GET requests that miss a query parameter."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            missing = [name for name in names if not request.args.get(name)]
            if missing:
                return _error(f"Missing query parameters: {missing}", "INVALID_PARAMETER", 400)
            return f(*args, **kwargs)
        return decorated_function
    return decorator


def _caller() -> str:
    return request.headers.get(CALLER_HEADER, "").strip()


# ---- REST API Endpoints ----

@bp.route("/health", methods=["GET"])
def health():
    """Health check endpoint."""
    delegate = _delegate()
    return jsonify({
        "status": "healthy",
        "timestamp": time.time(),
        "uptime": time.time() - delegate.metrics["start_time"],
        "version": "2.0.0",
        "owner": delegate.owner,
        "trade_wallet": delegate.trade_wallet,
        "protocol": delegate.protocol,
        "connections": _connections().get_connection_count()
    }), 200


@bp.route("/rule", methods=["POST"])
@validate_json_request(required_fields=["sender_token", "signer_token", "sender_amount", "signer_amount"])
def create_rule():
    """Create a standing rule (owner only)."""
    data = request.get_json()
    caller = _caller()
    logger.info(f"Create rule request from {caller}: {data['sender_amount']} {data['sender_token']} "
                f"for {data['signer_amount']} {data['signer_token']}")

    try:
        rule_id = _delegate().create_rule(
            caller,
            data["sender_token"],
            data["signer_token"],
            data["sender_amount"],
            data["signer_amount"],
        )
    except DelegateError as e:
        return _delegate_error(e)
    except ValueError as e:
        return _error(str(e), "INVALID_PARAMETER", 400)

    return jsonify({"rule_id": rule_id}), 201


@bp.route("/rule/<int:rule_id>", methods=["DELETE"])
def delete_rule(rule_id):
    """Delete a standing rule (owner only)."""
    caller = _caller()
    logger.info(f"Delete rule request from {caller}: rule_id={rule_id}")

    try:
        _delegate().delete_rule(caller, rule_id)
    except DelegateError as e:
        return _delegate_error(e)

    return jsonify({"success": True, "rule_id": rule_id}), 200


@bp.route("/rule/<int:rule_id>", methods=["GET"])
def get_rule(rule_id):
    """Get an active rule by id."""
    try:
        rule = _delegate().get_rule(rule_id)
    except RuleNotActive as e:
        return _delegate_error(e)
    return jsonify(rule.to_dict()), 200


@bp.route("/book/<sender_token>/<signer_token>", methods=["GET"])
def get_book(sender_token, signer_token):
    """Get a market's ordered rule list."""
    try:
        snapshot = _delegate().get_book_snapshot(sender_token, signer_token)
    except ValueError as e:
        return _error(str(e), "INVALID_PARAMETER", 400)
    return jsonify(snapshot), 200


@bp.route("/markets", methods=["GET"])
def get_markets():
    """List every market with its active rule count."""
    delegate = _delegate()
    markets = [
        {
            "sender_token": sender,
            "signer_token": signer,
            "first_rule_id": delegate.first_rule_id(sender, signer),
            "total_active_rules": delegate.total_active_rules(sender, signer),
        }
        for sender, signer in delegate.book.markets()
    ]
    return jsonify({"markets": markets, "count": len(markets)}), 200


@bp.route("/quote/signer-side", methods=["GET"])
@require_query_params("sender_amount", "sender_token", "signer_token")
def signer_side_quote():
    """Signer amount needed to receive sender_amount."""
    args = request.args
    try:
        signer_amount = _delegate().get_signer_side_quote(
            args["sender_amount"], args["sender_token"], args["signer_token"]
        )
    except DelegateError as e:
        return _delegate_error(e)
    except ValueError as e:
        return _error(str(e), "INVALID_PARAMETER", 400)

    return jsonify({
        "sender_token": args["sender_token"],
        "signer_token": args["signer_token"],
        "sender_amount": args["sender_amount"],
        "signer_amount": str(signer_amount),
    }), 200


@bp.route("/quote/sender-side", methods=["GET"])
@require_query_params("signer_amount", "sender_token", "signer_token")
def sender_side_quote():
    """Sender amount obtainable for signer_amount."""
    args = request.args
    try:
        sender_amount = _delegate().get_sender_side_quote(
            args["signer_amount"], args["sender_token"], args["signer_token"]
        )
    except DelegateError as e:
        return _delegate_error(e)
    except ValueError as e:
        return _error(str(e), "INVALID_PARAMETER", 400)

    return jsonify({
        "sender_token": args["sender_token"],
        "signer_token": args["signer_token"],
        "sender_amount": str(sender_amount),
        "signer_amount": args["signer_amount"],
    }), 200


@bp.route("/quote/max", methods=["GET"])
@require_query_params("sender_token", "signer_token")
def max_quote():
    """Largest quote the trade wallet's balance and allowance support."""
    args = request.args
    try:
        sender_amount, signer_amount = _delegate().get_max_quote(args["sender_token"], args["signer_token"])
    except DelegateError as e:
        return _delegate_error(e)
    except ValueError as e:
        return _error(str(e), "INVALID_PARAMETER", 400)

    return jsonify({
        "sender_token": args["sender_token"],
        "signer_token": args["signer_token"],
        "sender_amount": str(sender_amount),
        "signer_amount": str(signer_amount),
    }), 200


@bp.route("/statistics", methods=["GET"])
def get_statistics():
    """Get delegate statistics."""
    return jsonify(_delegate().get_statistics()), 200


# ---- Error Handlers ----

@bp.app_errorhandler(404)
def not_found(error):
    return _error("Endpoint not found", "NOT_FOUND", 404)


@bp.app_errorhandler(405)
def method_not_allowed(error):
    return _error("Method not allowed", "METHOD_NOT_ALLOWED", 405)


@bp.app_errorhandler(500)
def internal_error(error):
    logger.error(f"Internal server error: {error}")
    return _error("Internal server error", "INTERNAL_ERROR", 500)


# ---- WebSocket Event Handlers ----

def _market_from(data) -> Optional[Tuple[str, str]]:
    if not isinstance(data, dict):
        return None
    try:
        return market_key(data.get("sender_token"), data.get("signer_token"))
    except ValueError:
        return None


def on_connect():
    """Handle client connection."""
    session_id = request.sid
    user_agent = request.headers.get("User-Agent", "unknown")
    _connections().add_connection(session_id, {"user_agent": user_agent})
    logger.info(f"Client connected: {session_id}")

    emit("connected", {
        "status": "connected",
        "session_id": session_id,
        "timestamp": time.time(),
        "markets": [list(m) for m in _delegate().book.markets()]
    })


def on_disconnect(*args):
    """Handle client disconnection."""
    _connections().remove_connection(request.sid)
    logger.info(f"Client disconnected: {request.sid}")


def on_subscribe(data):
    """Follow a market: send its snapshot now and rule events as they happen."""
    market = _market_from(data)
    if market is None:
        emit("error", {"message": "Subscription needs sender_token and signer_token"})
        return

    _connections().subscribe(request.sid, market)
    emit("book_snapshot", _delegate().get_book_snapshot(*market))
    emit("subscribed", {
        "sender_token": market[0],
        "signer_token": market[1],
        "timestamp": time.time()
    })


def on_unsubscribe(data):
    market = _market_from(data)
    if market is None:
        emit("error", {"message": "Unsubscription needs sender_token and signer_token"})
        return

    _connections().unsubscribe(request.sid, market)
    emit("unsubscribed", {
        "sender_token": market[0],
        "signer_token": market[1],
        "timestamp": time.time()
    })


def on_ping():
    emit("pong", {"timestamp": time.time()})


def _register_market_handlers(sio: SocketIO):
    sio.on_event("connect", on_connect, namespace=MARKET_NAMESPACE)
    sio.on_event("disconnect", on_disconnect, namespace=MARKET_NAMESPACE)
    sio.on_event("subscribe", on_subscribe, namespace=MARKET_NAMESPACE)
    sio.on_event("unsubscribe", on_unsubscribe, namespace=MARKET_NAMESPACE)
    sio.on_event("ping", on_ping, namespace=MARKET_NAMESPACE)


def _rule_event_forwarder(sio: SocketIO, connections: ConnectionManager):
    """Build a delegate event handler pushing rule events to market subscribers of one app."""
    def forward(event):
        payload = event.to_dict()
        subscribers = connections.get_market_subscribers(event.market)
        for session_id in subscribers:
            sio.emit("rule_event", payload, namespace=MARKET_NAMESPACE, to=session_id)
        if subscribers:
            logger.debug(f"Emitted {event.event_type} to {len(subscribers)} subscribers")
    return forward


# ---- Application Factory ----

def create_app(config=None, delegate: Optional[Delegate] = None) -> Flask:
    """
    Application factory.

    A delegate may be injected; otherwise one is built from the DELEGATE_*
    config keys, and a refused staking approval aborts app creation.
    """
    app = Flask(__name__)
    app.config.update(DEFAULT_CONFIG)
    if config:
        app.config.update(config)

    if delegate is None:
        try:
            delegate = create_delegate(
                owner=app.config["DELEGATE_OWNER"],
                trade_wallet=app.config["DELEGATE_TRADE_WALLET"],
                swap_contract=app.config["DELEGATE_SWAP_CONTRACT"],
                registry=app.config["DELEGATE_REGISTRY"],
                staking_token=app.config["DELEGATE_STAKING_TOKEN"],
            )
        except SetupFailed:
            logger.error("Delegate setup failed; refusing to start")
            raise

    app.extensions["delegate"] = delegate
    app.extensions["delegate_connections"] = connections = ConnectionManager()
    app.register_blueprint(bp)

    # One Socket.IO server per app, in threading mode
    sio = SocketIO(app, async_mode="threading", cors_allowed_origins="*")
    app.extensions["socketio"] = sio
    _register_market_handlers(sio)
    delegate.add_event_handler(_rule_event_forwarder(sio, connections))

    return app


def get_socketio(app: Flask) -> SocketIO:
    """The Socket.IO server bound to `app` by create_app()."""
    return app.extensions["socketio"]


# ---- Run Server ----

def run(app: Flask, host="0.0.0.0", port=5000, debug=False):
    """Run the API server."""
    delegate = app.extensions["delegate"]
    logger.info(f"Starting Delegate API server on {host}:{port}")
    logger.info(f"Owner: {delegate.owner} trade wallet: {delegate.trade_wallet}")
    logger.info(f"Debug mode: {debug}")

    get_socketio(app).run(
        app,
        host=host,
        port=port,
        debug=debug,
        use_reloader=False,
        allow_unsafe_werkzeug=True
    )


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Swap Delegate API")
    parser.add_argument("--host", default="0.0.0.0", help="Host to bind to")
    parser.add_argument("--port", type=int, default=5000, help="Port to bind to")
    parser.add_argument("--debug", action="store_true", help="Enable debug mode")
    parser.add_argument("--owner", help="Owner address (defaults to DELEGATE_OWNER)")
    parser.add_argument("--trade-wallet", help="Trade wallet address (defaults to the owner)")

    args = parser.parse_args()

    overrides = {"DEBUG": args.debug}
    if args.owner:
        overrides["DELEGATE_OWNER"] = args.owner
    if args.trade_wallet:
        overrides["DELEGATE_TRADE_WALLET"] = args.trade_wallet

    run(create_app(overrides), host=args.host, port=args.port, debug=args.debug)
