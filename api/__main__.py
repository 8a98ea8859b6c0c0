"""
Development server: ``python -m api``.
In production serve ``api:create_app()`` through a WSGI server (gunicorn/uwsgi).
"""
import os
from . import create_app


def main():
    app = create_app()
    host = os.getenv("FLASK_RUN_HOST", "127.0.0.1")
    port = int(os.getenv("FLASK_RUN_PORT", "8000"))
    if not app.config["COOKIE_SECURE"]:
        app.logger.warning("COOKIE_SECURE is off; token cookies travel over plain HTTP")
    app.run(host=host, port=port, debug=app.config.get("DEBUG", False))


if __name__ == "__main__":
    main()
