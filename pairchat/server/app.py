from __future__ import annotations

import logging
import secrets

import flask
import flask_socketio
from flask_login import LoginManager

from pairchat.configurations import relay_config
from pairchat.server.admin import AdminUser, admin_bp
from pairchat.server.admin.aggregator import AdminEventAggregator
from pairchat.server.admin.namespace import AdminNamespace
from pairchat.server.relay import ChatRelay


def setup_logger(name, log_file, level=logging.INFO):
    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    logger = logging.getLogger(name)
    logger.setLevel(level)
    logger.handlers.clear()

    if log_file:
        handler = logging.FileHandler(log_file)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)
    logger.propagate = False

    return logger


logger = logging.getLogger(__name__)

CONFIG = relay_config.RelayConfig()

RELAY: ChatRelay | None = None
ADMIN_AGGREGATOR: AdminEventAggregator | None = None


#######################
# Flask Configuration #
#######################

app = flask.Flask(__name__)

# Configured in create_app() once the RelayConfig is known
socketio = flask_socketio.SocketIO()

# Flask-Login setup for admin authentication
login_manager = LoginManager()
login_manager.init_app(app)
login_manager.login_view = 'admin.login'
login_manager.login_message = 'Please log in to access the admin dashboard.'


@login_manager.user_loader
def load_user(user_id):
    if user_id == 'admin':
        return AdminUser(user_id)
    return None


app.register_blueprint(admin_bp)


@app.route("/")
def index():
    online = len(RELAY.sessions) if RELAY is not None else 0
    return flask.jsonify({"service": "pairchat", "online": online})


######################
# Socket.IO handlers #
######################


def _dispatch(method_name: str, data=None):
    if RELAY is None:
        logger.error(f"Received {method_name} before the relay was started")
        return
    getattr(RELAY, method_name)(flask.request.sid, data)


@socketio.on("connect")
def on_connect(auth=None):
    _dispatch("on_connect")


@socketio.on("disconnect")
def on_disconnect(reason=None):
    _dispatch("on_disconnect")


@socketio.on("request_match")
def on_request_match(data):
    _dispatch("on_request_match", data)


@socketio.on("leave_queue")
def on_leave_queue(data=None):
    _dispatch("on_leave_queue", data)


@socketio.on("send_message")
def on_send_message(data):
    _dispatch("on_send_message", data)


@socketio.on("react")
def on_react(data):
    _dispatch("on_react", data)


@socketio.on("unsend")
def on_unsend(data):
    _dispatch("on_unsend", data)


@socketio.on("typing")
def on_typing(data):
    _dispatch("on_typing", data)


@socketio.on("leave_room")
def on_leave_room(data=None):
    _dispatch("on_leave_room", data)


@socketio.on("reconnect_room")
def on_reconnect_room(data):
    _dispatch("on_reconnect_room", data)


@socketio.on("fetch_missed")
def on_fetch_missed(data=None):
    _dispatch("on_fetch_missed", data)


def create_app(config: relay_config.RelayConfig):
    """Apply a RelayConfig to the module-level app and build the relay.

    Returns:
        The ChatRelay, not yet started.
    """
    global CONFIG, RELAY, ADMIN_AGGREGATOR
    CONFIG = config

    setup_logger("pairchat", config.log_file, level=config.log_level)

    secret_key = config.secret_key
    if not secret_key:
        secret_key = secrets.token_hex(32)
        logger.warning(
            "PAIRCHAT_SECRET_KEY not set. Using a random key; admin sessions "
            "will not survive a restart."
        )
    app.config["SECRET_KEY"] = secret_key
    app.config["ADMIN_PASSWORD"] = config.admin_password if config.admin_enabled else None

    socketio.init_app(
        app,
        async_mode="eventlet",
        cors_allowed_origins=config.cors_allowed_origins,
        ping_interval=config.ping_interval,
        ping_timeout=config.ping_timeout,
    )

    if config.admin_enabled:
        ADMIN_AGGREGATOR = AdminEventAggregator(socketio)
        app.extensions["pairchat_admin_aggregator"] = ADMIN_AGGREGATOR

    RELAY = ChatRelay(socketio, config, admin_aggregator=ADMIN_AGGREGATOR)

    if ADMIN_AGGREGATOR is not None:
        ADMIN_AGGREGATOR.attach(RELAY)
        socketio.on_namespace(AdminNamespace("/admin", aggregator=ADMIN_AGGREGATOR, relay=RELAY))
        logger.info("Admin namespace registered on /admin")

    return RELAY


def run(config: relay_config.RelayConfig):
    relay = create_app(config)
    relay.start()
    if ADMIN_AGGREGATOR is not None:
        ADMIN_AGGREGATOR.start_broadcast_loop(interval_seconds=1.0)
        logger.info("Admin event aggregator broadcast loop started")

    logger.info(f"pairchat relay starting on http://{config.host}:{config.port}")

    socketio.run(
        app,
        host=config.host,
        port=config.port,
        log_output=False,
    )
