import logging
import time

from flask import Flask, current_app, g, request
from flask_cors import CORS

from storefront.blueprints.auth import auth_bp
from storefront.blueprints.cart import cart_bp
from storefront.blueprints.categories import categories_bp
from storefront.blueprints.feedback import feedback_bp
from storefront.blueprints.monitoring import monitoring_bp
from storefront.blueprints.orders import orders_bp
from storefront.blueprints.products import products_bp
from storefront.blueprints.system import system_bp
from storefront.config import Config
from storefront.database import Base, close_db, engine
from storefront.errors import register_error_handlers
from storefront.monitoring import MonitoringService, load_monitoring_config
from storefront.observability import (
    configure_logging,
    ensure_request_id,
    increment_counter,
    observe_latency,
)

app = Flask(__name__)
Config.configure_app(app)
configure_logging(app)
register_error_handlers(app)
CORS(app, resources={r"/api/*": {"origins": list(Config.CORS_ORIGINS)}}, supports_credentials=True)

for blueprint in (auth_bp, products_bp, categories_bp, cart_bp, orders_bp, feedback_bp, monitoring_bp, system_bp):
    app.register_blueprint(blueprint)

logger = logging.getLogger(__name__)


# Initialize database tables
def init_database():
    """Initialize database tables"""
    try:
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables initialized successfully")
    except Exception as e:
        logger.exception("Error initializing database: %s", e)


def init_monitoring(flask_app: Flask):
    """Attach the monitoring service; it only polls when MONITORING_ENABLED is set."""
    try:
        monitoring_config = load_monitoring_config()
    except ValueError as exc:
        logger.error("Monitoring disabled, configuration rejected: %s", exc)
        flask_app.extensions["monitoring"] = None
        return None

    service = MonitoringService(monitoring_config, engine=engine)
    flask_app.extensions["monitoring"] = service
    if Config.MONITORING_ENABLED:
        service.start()
    return service


init_database()
init_monitoring(app)


@app.before_request
def before_request_logging():
    g.current_user = None
    g.request_started_at = time.perf_counter()
    g.request_id = ensure_request_id()
    increment_counter(
        "http_requests_total",
        labels={
            "method": request.method,
            "endpoint": request.endpoint or request.path,
        },
    )


@app.after_request
def after_request_logging(response):
    started = getattr(g, "request_started_at", None)
    if started is not None:
        duration_ms = (time.perf_counter() - started) * 1000
        observe_latency(
            "http_request_latency_ms",
            duration_ms,
            labels={
                "method": request.method,
                "endpoint": request.endpoint or request.path,
                "status": str(response.status_code),
            },
        )
    # Client errors count towards the API error rate too
    if response.status_code >= 400:
        increment_counter(
            "http_errors_total",
            labels={
                "method": request.method,
                "endpoint": request.endpoint or request.path,
                "status": str(response.status_code),
            },
        )
    if response.status_code >= 500:
        logger.error("Request finished with error status %s", response.status_code)
    else:
        logger.info("Request finished", extra={"status_code": response.status_code})

    request_id = getattr(g, "request_id", None)
    if request_id:
        response.headers[current_app.config.get("REQUEST_ID_HEADER", Config.REQUEST_ID_HEADER)] = request_id
    return response


@app.teardown_appcontext
def teardown_db(exception):
    try:
        close_db(exception)
    except RuntimeError:
        # Handle case where we're outside of application context during tests
        pass
