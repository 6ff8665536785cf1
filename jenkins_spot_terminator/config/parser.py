"""
Command line / environment configuration.

Every flag falls back to an environment variable so the daemon can be
configured either way, e.g. from a systemd unit or a container spec.
"""

import argparse
import os
from typing import List, Mapping, Optional

from pydantic import ValidationError

from jenkins_spot_terminator.models.config import DEFAULT_METADATA_URL, TerminatorConfig

INSTANCE_METADATA_URL_KEY = "INSTANCE_METADATA_URL"
JENKINS_MASTER_URL_KEY = "JENKINS_MASTER_URL"
JENKINS_MASTER_API_USER_KEY = "JENKINS_MASTER_API_USER"
JENKINS_MASTER_API_TOKEN_KEY = "JENKINS_MASTER_API_TOKEN"
NODE_TERMINATION_GRACE_PERIOD_KEY = "NODE_TERMINATION_GRACE_PERIOD"
LOG_LEVEL_KEY = "LOG_LEVEL"


class ConfigError(Exception):
    """Raised when a required setting is missing or invalid."""
    pass


class _ArgumentParser(argparse.ArgumentParser):
    def error(self, message: str):
        raise ConfigError(message)


def build_parser(environ: Mapping[str, str]) -> argparse.ArgumentParser:
    """Build the argument parser, using ``environ`` for the defaults."""
    parser = _ArgumentParser(
        prog="jenkins-spot-terminator",
        description=(
            "Take this Jenkins agent offline when the EC2 instance is about "
            "to be interrupted, and back online if the interruption is cancelled."
        ),
    )
    parser.add_argument(
        "--metadata-url",
        default=environ.get(INSTANCE_METADATA_URL_KEY, DEFAULT_METADATA_URL),
        help="The URL of EC2 instance metadata. This shouldn't need to be changed unless you are testing.",
    )
    parser.add_argument(
        "--jenkins-master-url",
        default=environ.get(JENKINS_MASTER_URL_KEY, ""),
        help="The URL of Jenkins master",
    )
    parser.add_argument(
        "--jenkins-master-api-user",
        default=environ.get(JENKINS_MASTER_API_USER_KEY, "admin"),
        help="The API user of Jenkins master",
    )
    parser.add_argument(
        "--jenkins-master-api-token",
        default=environ.get(JENKINS_MASTER_API_TOKEN_KEY, ""),
        help="The API token of Jenkins master",
    )
    parser.add_argument(
        "--node-termination-grace-period",
        default=environ.get(NODE_TERMINATION_GRACE_PERIOD_KEY, "300"),
        help="Seconds before the interruption time at which the agent is taken offline",
    )
    parser.add_argument(
        "--log-level",
        default=environ.get(LOG_LEVEL_KEY, "INFO"),
        help="Logging level (DEBUG, INFO, WARNING, ERROR)",
    )
    return parser


def parse_cli_config(
    argv: Optional[List[str]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> TerminatorConfig:
    """Parse flags and environment into a validated TerminatorConfig."""
    if environ is None:
        environ = os.environ

    args = build_parser(environ).parse_args(argv)

    if not args.jenkins_master_url:
        raise ConfigError("jenkins master url is required")
    if not args.jenkins_master_api_user:
        raise ConfigError("jenkins master api user is required")
    if not args.jenkins_master_api_token:
        raise ConfigError("jenkins master api token is required")

    try:
        grace_period = int(args.node_termination_grace_period)
    except ValueError:
        raise ConfigError(
            f"node termination grace period must be an integer, "
            f"got {args.node_termination_grace_period!r}"
        )

    try:
        return TerminatorConfig(
            metadata_url=args.metadata_url.rstrip("/"),
            jenkins_master_url=args.jenkins_master_url.rstrip("/"),
            jenkins_master_api_user=args.jenkins_master_api_user,
            jenkins_master_api_token=args.jenkins_master_api_token,
            node_termination_grace_period=grace_period,
            log_level=args.log_level.upper(),
        )
    except ValidationError as e:
        raise ConfigError(f"invalid configuration: {e}")
