"""
Command line entry point: ``idpscim``.

Runs one reconciliation and exits 0 on success, 1 on any error.
"""

import logging
import sys
from typing import Optional

import click

from . import __version__
from .bootstrap import build_sync_service
from .config import load_settings
from .errors import ConfigurationError, IdpScimSyncError, SyncError
from .logging_setup import configure_logging


logger = logging.getLogger(__name__)


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.option("--config-file", "-c", type=click.Path(dir_okay=False), help="YAML configuration file")
@click.option("--log-level", "-l", help="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)")
@click.option("--log-format", "-f", type=click.Choice(["text", "json"]), help="Log output format")
@click.option("--debug", "-d", is_flag=True, help="Enable debug logging")
@click.option("--sync-method", "-m", help="Sync method, only 'groups' is implemented")
@click.option("--gws-service-account-file", "-s", type=click.Path(dir_okay=False), help="Google service account key file")
@click.option("--gws-user-email", "-u", help="Google Workspace user to impersonate")
@click.option("--gws-groups-filter", "-q", help="Comma separated group filters, e.g. 'name:Admin*,email:dev*'")
@click.option("--aws-scim-endpoint", "-e", help="SCIM endpoint URL")
@click.option("--aws-scim-access-token", "-t", help="SCIM bearer token")
@click.option("--aws-s3-bucket-name", "-b", help="S3 bucket holding the state")
@click.option("--aws-s3-bucket-key", "-k", help="S3 key of the state object")
@click.option("--state-backend", type=click.Choice(["s3", "disk"]), help="Where the state is stored")
@click.option("--state-file", type=click.Path(dir_okay=False), help="State file for the disk backend")
@click.option("--use-secrets-manager", is_flag=True, help="Read credentials from AWS Secrets Manager")
@click.option("--apply-order", type=click.Choice(["groups-first", "users-first"]), help="Create groups or users first")
@click.option("--dry-run", is_flag=True, help="Show what would change without applying it")
@click.option("--max-workers", type=int, help="Concurrent directory lookups")
@click.version_option(version=__version__)
def main(config_file: Optional[str], **options):
    """Sync Google Workspace groups and their members to a SCIM target (AWS IAM Identity Center).

    Settings can also come from IDPSCIM_* environment variables or a YAML
    config file; flags take precedence.

    Examples:

    \b
      idpscim -s sa.json -u admin@example.com -e https://scim.example.com/scim/v2 -t $TOKEN -b my-bucket
      idpscim --config-file .idpscim.yaml --dry-run
    """
    # Unset options and unset flags leave the value to env and config file
    overrides = {key: value for key, value in options.items() if value is not None and value is not False}
    try:
        settings = load_settings(config_file=config_file, **overrides)
    except ConfigurationError as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(1)

    configure_logging(settings.effective_log_level, settings.log_format)

    try:
        service = build_sync_service(settings)
        report = service.reconcile()
    except SyncError as e:
        logger.error(f"Sync failed in {e.phase} phase for {e.entity}: {e.cause}")
        sys.exit(1)
    except IdpScimSyncError as e:
        logger.error(f"Sync failed: {e}")
        sys.exit(1)

    logger.info(f"Sync report: {report.to_dict()}")
    sys.exit(0)


if __name__ == "__main__":
    main()
