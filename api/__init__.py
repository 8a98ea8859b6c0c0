import logging

from flask import Flask
from flasgger import Swagger
from flask_cors import CORS

from .config import get_config
from .errors import register_error_handlers
from models.db_storage import DBStorage
from models.stores import SqlRefreshTokenStore, SqlUserStore
from services.session_service import SessionService
from utils.security import CredentialVerifier
from utils.tokens import TokenIssuer

# Minimal Swagger config: exposes /swagger.json and UI at /apidocs
SWAGGER_TEMPLATE = {
    "swagger": "2.0.0",
    "info": {
        "title": "Session Auth API",
        "version": "1.0.0",
        "description": "Registration, login and refresh-token rotation with cookie transport.",
    },
    "basePath": "/",
    "schemes": ["http", "https"],
    "securityDefinitions": {
        "Bearer": {
            "type": "apiKey",
            "name": "Authorization",
            "in": "header",
            "description": "Enter the access token with the `Bearer ` prefix, e.g. \"Bearer abcde12345\"."
        }
    }
}

SWAGGER_CONFIG = {
    "headers": [],
    "specs": [
        {
            "endpoint": "apispec_1",
            "route": "/swagger.json",
            "rule_filter": lambda rule: True,   # include all endpoints
            "model_filter": lambda tag: True,   # include all models
        }
    ],
    "static_url_path": "/flasgger_static",
    "swagger_ui": True,
    "specs_route": "/apidocs/",
}


def build_session_service(config, storage: DBStorage) -> SessionService:
    """
    Wire the session core from configuration: every collaborator is built
    here and handed to SessionService explicitly.
    """
    verifier = CredentialVerifier(
        time_cost=config["ARGON2_TIME_COST"],
        memory_cost=config["ARGON2_MEMORY_COST"],
        parallelism=config["ARGON2_PARALLELISM"],
    )
    issuer = TokenIssuer(
        secret=config["JWT_SECRET"],
        algorithm=config["JWT_ALGORITHM"],
        issuer=config["JWT_ISSUER"],
        access_ttl=config["ACCESS_TOKEN_EXPIRES"],
        refresh_ttl=config["REFRESH_TOKEN_EXPIRES"],
    )
    return SessionService(
        verifier=verifier,
        issuer=issuer,
        refresh_tokens=SqlRefreshTokenStore(storage),
        users=SqlUserStore(storage),
        default_role=config["DEFAULT_ROLE"],
    )


def create_app(config_name: str | None = None, overrides: dict | None = None) -> Flask:
    """
    Application factory: creates and configures the Flask app.
    ``overrides`` is applied on top of the selected config class (used by tests).
    """
    app = Flask(__name__)

    app.config.from_object(get_config(config_name))
    if overrides:
        app.config.update(overrides)

    logging.basicConfig(
        level=app.config["LOG_LEVEL"],
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Cookies carry the tokens: cross-origin credentials need an explicit origin list
    origins = app.config.get("CORS_ORIGINS", "*")
    if origins == "*":
        CORS(app, resources={r"/*": {"origins": "*"}})
    else:
        CORS(
            app,
            resources={r"/*": {"origins": [o.strip() for o in origins.split(",") if o.strip()]}},
            supports_credentials=True,
        )

    Swagger(app, template=SWAGGER_TEMPLATE, config=SWAGGER_CONFIG)

    register_error_handlers(app)

    storage = DBStorage(app.config["DATABASE_URL"], echo=app.config["SQL_ECHO"])
    storage.reload()
    app.extensions["storage"] = storage
    app.extensions["session_service"] = build_session_service(app.config, storage)

    from .health import bp as health_bp
    from .auth import bp as auth_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(auth_bp)

    # Ensure the DB session is removed at the end of each request/app context
    @app.teardown_appcontext
    def remove_session(exception=None):
        # calls scoped_session.remove(), preventing connection leaks
        storage.close()

    @app.route("/")
    def root():
        return {
            "message": "Welcome to Session Auth API",
            "docs": "/apidocs/",
            "health": "/health",
        }, 200

    return app
