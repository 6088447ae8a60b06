"""
Command-line entry point.

Runs one provisioning workflow from a YAML or JSON options file:
    aap-provision --config provision.yml

Options:
    --config     Options file (YAML or JSON mapping)
    --verbose    Enable debug logging

Exit codes: 0 job succeeded, 1 run failed, 2 invalid configuration.
SIGINT and SIGTERM cancel the run; temporary resources are still removed
and the run record is printed.
"""

import argparse
import json
import logging
import signal
import sys
import threading
from pathlib import Path
from typing import List, Optional

import yaml

from aap_provisioner.config.settings import ClientSettings, load_config
from aap_provisioner.core.aap_client import AAPClient
from aap_provisioner.core.errors import ConfigurationInvalidError
from aap_provisioner.core.provisioning import ProvisioningExecutor

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_RUN_FAILED = 1
EXIT_CONFIG_INVALID = 2


def _load_options(path: Path) -> dict:
    """Read the options file; JSON is valid YAML, so one parser covers both."""
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigurationInvalidError(f"cannot read config file {path}: {e}")
    except yaml.YAMLError as e:
        raise ConfigurationInvalidError(f"cannot parse config file {path}: {e}")
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigurationInvalidError(f"config file {path} must contain a mapping")
    return data


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="aap-provision",
        description="Launch an AAP job against a (temporary) inventory and wait for it",
    )
    parser.add_argument("--config", required=True, type=Path, help="YAML or JSON options file")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        config = load_config(_load_options(args.config))
    except ConfigurationInvalidError as e:
        logger.error(str(e))
        return EXIT_CONFIG_INVALID

    with AAPClient(ClientSettings.from_config(config)) as client:
        executor = ProvisioningExecutor(config, client)

        def graceful_shutdown(signum, frame):
            name = signal.Signals(signum).name
            logger.warning(f"Received {name}, cancelling provisioning run")
            executor.cancel(name)

        # A repeated signal only re-cancels; teardown still runs to the end
        if threading.current_thread() is threading.main_thread():
            signal.signal(signal.SIGTERM, graceful_shutdown)
            signal.signal(signal.SIGINT, graceful_shutdown)
        run = executor.run()

    print(json.dumps(run.to_dict(), indent=2))
    return EXIT_OK if run.success else EXIT_RUN_FAILED


if __name__ == "__main__":
    sys.exit(main())
