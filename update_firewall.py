#!/usr/bin/python3
"""
Cloudflare Hetzner Firewall Updater

This module restricts inbound traffic on a Hetzner Cloud firewall to Cloudflare's
published IPv4 and IPv6 ranges. The full rule set is replaced on every run.
"""

import argparse
import logging
import os
import re
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

import requests
from dotenv import find_dotenv, load_dotenv


class FirewallSyncConfig:
    """Configuration constants for the firewall updater."""

    # API endpoints
    CLOUDFLARE_IPV4_URL = 'https://www.cloudflare.com/ips-v4/'
    CLOUDFLARE_IPV6_URL = 'https://www.cloudflare.com/ips-v6/'
    HETZNER_API_URL = 'https://api.hetzner.cloud/v1'

    # Firewall naming
    FIREWALL_NAME_PREFIX = 'Cloudflare'

    # Timeouts
    REQUEST_TIMEOUT = 30

    USER_AGENT = 'Cloudflare-Hetzner-Firewall/1.0'
    LOG_FILE = 'cloudflare_firewall.log'
    LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class FirewallSyncError(Exception):
    """Base exception for firewall update errors."""
    pass


class ConfigurationError(FirewallSyncError):
    """Exception raised when a required setting is missing."""

    def __init__(self, field: str):
        self.field = field
        super().__init__(
            f"{field} is not defined. Please set it in .env file or as environment variable."
        )


class RangeFetchError(FirewallSyncError):
    """Exception raised when Cloudflare IP ranges cannot be fetched."""

    def __init__(self, url: str, detail: str = ''):
        self.url = url
        message = f"Failed to fetch {url}"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class FirewallAPIError(FirewallSyncError):
    """Exception raised when a Hetzner firewall API call fails."""

    operation = 'call firewall API'

    def __init__(self, status: Optional[int] = None, body: str = ''):
        self.status = status
        self.body = body
        message = f"Failed to {self.operation}"
        if status is not None:
            message += f" (HTTP {status})"
        if body:
            message += f": {body}"
        super().__init__(message)


class FirewallRenameError(FirewallAPIError):
    """Exception raised when the firewall cannot be renamed."""
    operation = 'update firewall name'


class FirewallRulesError(FirewallAPIError):
    """Exception raised when the firewall rules cannot be replaced."""
    operation = 'apply firewall rules'


@dataclass
class Settings:
    """Runtime settings, resolved once at the entry point."""

    api_token: str = ''
    ports: str = ''
    firewall_id: str = ''
    worker_secret: Optional[str] = None

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "Settings":
        """Load settings from environment variables and an optional .env file."""
        if env_file:
            load_dotenv(env_file)
        else:
            load_dotenv(find_dotenv(usecwd=True))

        return cls(
            api_token=os.getenv('API_TOKEN', ''),
            ports=os.getenv('PORTS', ''),
            firewall_id=os.getenv('FIREWALL_ID', ''),
            worker_secret=os.getenv('WORKER_SECRET'),
        )

    def validate(self) -> None:
        """
        Check that every required setting is present.

        Raises:
            ConfigurationError: For the first missing setting
        """
        for field, value in (
            ('API_TOKEN', self.api_token),
            ('PORTS', self.ports),
            ('FIREWALL_ID', self.firewall_id),
        ):
            if not value:
                raise ConfigurationError(field)

    @property
    def port_list(self) -> List[str]:
        return self.ports.split(',')


def parse_ranges(text: str) -> List[str]:
    """
    Split a newline-delimited range list, dropping blank lines.

    Both LF and CRLF line endings are accepted. Entries are kept as-is and
    in source order.
    """
    return [line for line in re.split(r'\r?\n', text) if line.strip()]


def compile_rules(lists: Sequence[Sequence[str]], ports: Sequence[str]) -> List[Dict[str, Any]]:
    """
    Build one inbound TCP rule per port, each allowing every given range.

    Args:
        lists: Range lists to combine, in order (no de-duplication)
        ports: Port specifications, passed through unchanged

    Returns:
        List of rule dicts in Hetzner's set_rules format
    """
    source_ips: List[str] = []
    for ranges in lists:
        source_ips.extend(ranges)

    return [
        {
            'direction': 'in',
            'source_ips': source_ips,
            'protocol': 'tcp',
            'port': port,
        }
        for port in ports
    ]


def firewall_name(timestamp: Optional[datetime] = None) -> str:
    """Return the firewall name stamped with an ISO-8601 UTC timestamp."""
    if timestamp is None:
        timestamp = datetime.now(timezone.utc)
    stamp = timestamp.astimezone(timezone.utc).isoformat(timespec='milliseconds')
    return f"{FirewallSyncConfig.FIREWALL_NAME_PREFIX} {stamp.replace('+00:00', 'Z')}"


class FirewallUpdater:
    """Fetches Cloudflare ranges and applies them to a Hetzner firewall."""

    def __init__(self, settings: Settings, dry_run: bool = False,
                 session: Optional[requests.Session] = None):
        """
        Initialize the firewall updater.

        Args:
            settings: Validated runtime settings
            dry_run: If True, fetch and compile only, without touching the firewall
            session: Optional requests session; one is created when omitted
        """
        self.settings = settings
        self.dry_run = dry_run
        self.config = FirewallSyncConfig()
        self.logger = logging.getLogger(__name__)
        self._owns_session = session is None
        self.session = session if session is not None else self._create_session()

        if self.dry_run:
            self.logger.info("=== DRY RUN MODE - No changes will be made ===")

    def _create_session(self) -> requests.Session:
        """Create a configured requests session."""
        session = requests.Session()
        session.headers.update({'User-Agent': self.config.USER_AGENT})
        return session

    def _firewall_url(self, suffix: str = '') -> str:
        return f"{self.config.HETZNER_API_URL}/firewalls/{self.settings.firewall_id}{suffix}"

    def _auth_headers(self) -> Dict[str, str]:
        return {
            'Authorization': f"Bearer {self.settings.api_token}",
            'Content-Type': 'application/json',
        }

    def fetch_ranges(self, url: str) -> List[str]:
        """
        Fetch a newline-delimited list of CIDR ranges.

        Args:
            url: The URL to fetch

        Returns:
            The non-blank lines of the response body

        Raises:
            RangeFetchError: On any status other than 200 or a network error
        """
        self.logger.debug(f"Fetching URL: {url}")
        try:
            response = self.session.get(url, timeout=self.config.REQUEST_TIMEOUT)
        except requests.RequestException as e:
            self.logger.error(f"Error fetching {url}: {e}")
            raise RangeFetchError(url, str(e)) from e

        if response.status_code != 200:
            self.logger.error(f"Error fetching {url}: HTTP {response.status_code}")
            raise RangeFetchError(url, f"HTTP {response.status_code}")

        ranges = parse_ranges(response.text)
        self.logger.debug(f"Fetched {len(ranges)} ranges from {url}")
        return ranges

    def rename_firewall(self, timestamp: Optional[datetime] = None) -> str:
        """
        Rename the firewall with the current time.

        This runs before the rules are replaced so that a bad token or
        firewall ID fails before anything else changes.

        Returns:
            The new firewall name

        Raises:
            FirewallRenameError: If the API does not answer 200
        """
        name = firewall_name(timestamp)
        try:
            response = self.session.put(
                self._firewall_url(),
                headers=self._auth_headers(),
                json={'name': name},
                timeout=self.config.REQUEST_TIMEOUT,
            )
        except requests.RequestException as e:
            self.logger.error(f"Failed to update firewall name: {e}")
            raise FirewallRenameError(body=str(e)) from e

        if response.status_code != 200:
            self.logger.error(f"Failed to update firewall name: {response.text}")
            raise FirewallRenameError(response.status_code, response.text)

        self.logger.debug(f"Firewall renamed to {name!r}")
        return name

    def apply_rules(self, rules: List[Dict[str, Any]]) -> Any:
        """
        Replace the firewall's rule set.

        Returns:
            The decoded JSON response (the action started by Hetzner)

        Raises:
            FirewallRulesError: If the API answers anything but 200 or 201
        """
        try:
            response = self.session.post(
                self._firewall_url('/actions/set_rules'),
                headers=self._auth_headers(),
                json={'rules': rules},
                timeout=self.config.REQUEST_TIMEOUT,
            )
        except requests.RequestException as e:
            self.logger.error(f"Failed to apply firewall rules: {e}")
            raise FirewallRulesError(body=str(e)) from e

        if response.status_code not in (200, 201):
            self.logger.error(f"Failed to apply firewall rules: {response.text}")
            raise FirewallRulesError(response.status_code, response.text)

        if not response.text.strip():
            return {}
        try:
            return response.json()
        except ValueError as e:
            self.logger.error(f"Unreadable set_rules response: {response.text}")
            raise FirewallRulesError(response.status_code, response.text) from e

    def run(self) -> Any:
        """
        Main execution method.

        If applying the rules fails after the rename succeeded, the firewall
        keeps its new name and its previous rules. Nothing is rolled back.

        Returns:
            The Hetzner action payload, or a summary of the compiled rules in dry run mode
        """
        self.logger.info(f"Starting firewall update for ID: {self.settings.firewall_id}")

        try:
            port_list = self.settings.port_list

            self.logger.info("Fetching Cloudflare IP ranges...")
            ipv4_list = self.fetch_ranges(self.config.CLOUDFLARE_IPV4_URL)
            ipv6_list = self.fetch_ranges(self.config.CLOUDFLARE_IPV6_URL)
            self.logger.info(f"Found {len(ipv4_list)} IPv4 ranges and {len(ipv6_list)} IPv6 ranges")

            rules = compile_rules([ipv4_list, ipv6_list], port_list)
            self.logger.info(f"Created {len(rules)} firewall rules for ports: {', '.join(port_list)}")

            if self.dry_run:
                name = firewall_name()
                self.logger.info(f"DRY RUN: Would rename firewall to {name!r}")
                self.logger.info(f"DRY RUN: Would apply {len(rules)} rules with {len(rules[0]['source_ips']) if rules else 0} source ranges each")
                return {'dry_run': True, 'name': name, 'rules': rules}

            self.logger.info("Updating firewall name...")
            self.rename_firewall()

            self.logger.info("Applying firewall rules...")
            result = self.apply_rules(rules)
            self.logger.info("Firewall rules applied successfully")
            return result
        finally:
            if self._owns_session:
                self.session.close()


class _MaxLevelFilter(logging.Filter):
    """Pass only records below a given level."""

    def __init__(self, level: int):
        super().__init__()
        self.level = level

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno < self.level


def setup_logging(verbose: bool = False, log_file: Optional[str] = None) -> None:
    """Configure logging: progress to stdout, warnings and errors to stderr."""
    level = logging.DEBUG if verbose else logging.INFO
    formatter = logging.Formatter(FirewallSyncConfig.LOG_FORMAT)

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.addFilter(_MaxLevelFilter(logging.WARNING))
    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(logging.WARNING)
    handlers: List[logging.Handler] = [stdout_handler, stderr_handler]

    if log_file:
        handlers.append(logging.FileHandler(log_file))

    for handler in handlers:
        handler.setFormatter(formatter)

    logging.basicConfig(level=level, handlers=handlers, force=True)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description='Restrict a Hetzner Cloud firewall to Cloudflare IP ranges',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Environment:
  API_TOKEN      Hetzner Cloud API token (required)
  PORTS          Comma-separated list of ports, e.g. 80,443 (required)
  FIREWALL_ID    ID of the firewall to update (required)

Examples:
  %(prog)s                          # Update the firewall
  %(prog)s --dry-run                # Show the rules without applying them
  %(prog)s --env-file /etc/cf-fw.env  # Read settings from a specific file
        """
    )
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Fetch and compile rules without changing the firewall'
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose (debug) logging'
    )
    parser.add_argument(
        '--log-file',
        type=str,
        nargs='?',
        const=FirewallSyncConfig.LOG_FILE,
        help=f'Also write logs to this file (default when given without a path: {FirewallSyncConfig.LOG_FILE})'
    )
    parser.add_argument(
        '--env-file',
        type=str,
        help='Path to a .env file (default: search from the current directory)'
    )

    args = parser.parse_args(argv)

    setup_logging(verbose=args.verbose, log_file=args.log_file)
    logger = logging.getLogger(__name__)

    settings = Settings.from_env(args.env_file)
    try:
        settings.validate()
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    logger.info("Starting Hetzner Firewall update...")
    logger.info(f"Firewall ID: {settings.firewall_id}")
    logger.info(f"Ports: {settings.ports}")

    try:
        FirewallUpdater(settings, dry_run=args.dry_run).run()
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except FirewallSyncError as e:
        logger.error(f"Error: {e}")
        return 1
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        return 1

    logger.info("Firewall updated successfully!")
    return 0


if __name__ == "__main__":
    sys.exit(main())
