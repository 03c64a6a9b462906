"""WSGI entry point for the scheduling and billing API."""

from __future__ import annotations

import atexit

from . import APP_HOST, APP_PORT, create_app
from .extensions import notifier

app = create_app()
# Queued appointment and payment events are delivered before the process exits.
atexit.register(notifier.shutdown)


if __name__ == "__main__":
    app.logger.info("Serving scheduling and billing API on %s:%s", APP_HOST, APP_PORT)
    app.run(host=APP_HOST, port=APP_PORT, debug=False)
