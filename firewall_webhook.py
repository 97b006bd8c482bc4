#!/usr/bin/python3
"""
Remote trigger for the Cloudflare Hetzner firewall updater.

Exposes the update as an HTTP endpoint (optionally guarded by a shared secret
in the Authorization header) and as a scheduled entry point for cron or a
platform timer.
"""

import logging
import sys
from typing import Optional

from flask import Flask, request

from update_firewall import (
    ConfigurationError,
    FirewallSyncError,
    FirewallUpdater,
    Settings,
    setup_logging,
)

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None) -> Flask:
    """
    Create the Flask application.

    Args:
        settings: Fixed settings; when omitted they are read from the
            environment on every request
    """
    app = Flask(__name__)

    @app.route('/', methods=['GET', 'POST'])
    def trigger():
        current = settings if settings is not None else Settings.from_env()

        if current.worker_secret is not None and request.headers.get('Authorization') != current.worker_secret:
            logger.warning(f"Rejected manual call from {request.remote_addr}")
            return 'Unauthorized for manual calls.', 403

        if not current.api_token:
            return 'API_TOKEN is not defined. Please define it.', 403

        try:
            current.validate()
            FirewallUpdater(current).run()
        except ConfigurationError as e:
            logger.error(f"Configuration error: {e}")
            return str(e), 500
        except FirewallSyncError as e:
            logger.error(f"Firewall update failed: {e}")
            return str(e), 500
        except Exception as e:
            logger.exception(f"Fatal error: {e}")
            return str(e), 500

        return 'Firewall updated successfully', 200

    return app


def scheduled(settings: Optional[Settings] = None):
    """
    Run the update without request authorization.

    Raises:
        FirewallSyncError: If the configuration is incomplete or the update fails
    """
    if settings is None:
        settings = Settings.from_env()
    settings.validate()
    return FirewallUpdater(settings).run()


def scheduled_main() -> int:
    """Console entry point for scheduled runs."""
    setup_logging()
    try:
        scheduled()
    except FirewallSyncError as e:
        logger.error(f"Scheduled firewall update failed: {e}")
        return 1
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        return 1
    logger.info("Scheduled firewall update completed")
    return 0


if __name__ == "__main__":
    sys.exit(scheduled_main())
