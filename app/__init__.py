import os

from flask import Flask, g

import encryption
from constants import DATABASE_URL, DEFAULT_CONFIG, ENCRYPTION_KEY
from database import SessionLocal, configure_engine, init_db
from app.blueprints.inventory import inventory_bp
from app.blueprints.search import search_bp
from app.services.search_backends import init_search_backends
from app.services.search_indexer import schedule_search_index
from app.services.search_sync import SearchSyncQueue


def create_app(config=None):
    app = Flask(__name__)
    app.secret_key = os.environ.get("RENTAL_SECRET_KEY", "change-me")
    app.config.update(DEFAULT_CONFIG)
    app.config["DATABASE_URL"] = DATABASE_URL
    app.config["INVENTORY_ENCRYPTION_KEY"] = ENCRYPTION_KEY
    if config:
        app.config.update(config)

    configure_engine(app.config["DATABASE_URL"])
    encryption.configure(app.config["INVENTORY_ENCRYPTION_KEY"])
    init_search_backends(app)
    SearchSyncQueue(app)

    app.register_blueprint(inventory_bp)
    app.register_blueprint(search_bp)
    init_db()

    @app.before_request
    def bind_db_session():
        g.db = SessionLocal()

    @app.teardown_appcontext
    def remove_db_session(exception=None):
        SessionLocal.remove()

    schedule_search_index(app)
    return app
