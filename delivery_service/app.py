import logging

from flask import Flask
from sqlalchemy import text

from .config import Config
from .db import db
from .errors import DispatchError
from .realtime import ChangeBus, install_capture
from .routes import BLUEPRINTS
from .utils.responses import err


def create_app(overrides: dict | None = None) -> Flask:
    app = Flask(__name__)
    app.config.from_object(Config)
    if overrides:
        app.config.update(overrides)

    logging.basicConfig(
        level=app.config["LOG_LEVEL"],
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite"):
        options = app.config.setdefault("SQLALCHEMY_ENGINE_OPTIONS", {})
        options.setdefault("connect_args", {
            "timeout": app.config["SQLITE_BUSY_TIMEOUT"],
            "check_same_thread": False,
        })

    db.init_app(app)
    app.extensions["change_bus"] = ChangeBus(queue_size=app.config["BUS_QUEUE_SIZE"])
    install_capture()

    with app.app_context():
        db.create_all()

    for bp in BLUEPRINTS:
        app.register_blueprint(bp)

    @app.errorhandler(DispatchError)
    def dispatch_error(e):
        if e.http_status >= 500:
            app.logger.warning("%s: %s", e.code, e.detail)
        return err(e.code, e.http_status, **({"detail": e.detail} if e.detail else {}))

    @app.after_request
    def add_cors_headers(resp):
        resp.headers["Access-Control-Allow-Origin"] = "*"
        resp.headers["Access-Control-Allow-Headers"] = "Content-Type, Authorization"
        resp.headers["Access-Control-Allow-Methods"] = "GET,POST,DELETE,OPTIONS"
        return resp

    @app.get("/")
    def index():
        return {"service": "delivery", "status": "ok"}

    @app.get("/health")
    def health():
        try:
            db.session.execute(text("SELECT 1"))
        except Exception as e:
            app.logger.warning("health check failed: %s", e)
            return {"status": "degraded", "store": "unavailable"}, 503
        return {
            "status": "ok",
            "store": "ok",
            "bus_connections": app.extensions["change_bus"].connection_count,
        }

    return app


if __name__ == "__main__":
    app = create_app()
    app.run(host="0.0.0.0", port=app.config["PORT"], threaded=True)
