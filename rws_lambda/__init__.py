"""
RWS Lambda: AWS Lambda lifecycle orchestrator of the RWS framework.

This package packages, deploys, networks (VPC and EFS), invokes and tears
down the serverless functions of an RWS project.
"""

from .version import __version__  # noqa
from .context import DeploymentContext  # noqa
from .command import LambdaCommand, LambdaTarget, parse_target  # noqa
