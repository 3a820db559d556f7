"""
Jenkins Ops MCP Package

Jenkins client with CSRF/cookie session handling, SSL trust policies,
retrying request execution, and agent diagnostics and recovery, exposed as
an MCP server.
"""

import argparse
import asyncio
import logging
import sys

__version__ = "1.0.0"

from .config import load_settings  # noqa: E402
from . import server  # noqa: E402


def setup_logging(verbose: bool = False) -> None:
    """Configure structured logging"""
    import structlog

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=logging.DEBUG if verbose else logging.INFO,
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer() if not verbose else structlog.dev.ConsoleRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def main():
    """
    Main entry point for the Jenkins Ops MCP Server.

    Parses command-line arguments, configures settings, and starts the server.
    """
    parser = argparse.ArgumentParser(
        description='Jenkins Ops MCP Server - Jenkins automation and agent recovery',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                                    # Use default .env file
  %(prog)s --env-file /path/to/.env           # Use custom .env file
  %(prog)s --verbose                          # Enable debug logging

Environment Variables:
  JENKINS_URL                 Jenkins server URL (e.g., http://localhost:8080)
  JENKINS_USERNAME            Jenkins username
  JENKINS_TOKEN               Jenkins API token (recommended)
  JENKINS_PASSWORD            Jenkins password (alternative to token)
  JENKINS_TIMEOUT             Request timeout in seconds (default 30)
  JENKINS_MAX_RETRIES         Attempts on transport errors (default 3)
  JENKINS_SSL_VERIFY          Verify certificates (default true)
  JENKINS_SSL_ALLOW_SELF_SIGNED, JENKINS_SSL_BYPASS_ALL, JENKINS_SSL_DEBUG
  JENKINS_CA_CERT_PATH / JENKINS_CA_CERT_CONTENT
  JENKINS_CLIENT_CERT_PATH / JENKINS_CLIENT_CERT_CONTENT
  JENKINS_CLIENT_KEY_PATH / JENKINS_CLIENT_KEY_CONTENT
        """
    )

    parser.add_argument(
        '--env-file',
        metavar='PATH',
        help='Path to custom .env file with Jenkins credentials'
    )

    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose/debug logging'
    )

    parser.add_argument(
        '--version',
        action='version',
        version=f'jenkins-ops-mcp {__version__}'
    )

    args = parser.parse_args()

    setup_logging(args.verbose)
    logger = logging.getLogger(__name__)

    try:
        logger.info("Loading Jenkins configuration...")
        settings = load_settings(env_file=args.env_file)

        if not settings.is_configured:
            logger.error("Jenkins configuration is incomplete!")
            logger.error("Required: URL, username, and (token or password)")
            logger.error("Configure via a .env file or JENKINS_* environment variables")
            logger.error("For help, run: %(prog)s --help" % {'prog': parser.prog})
            sys.exit(1)

        server.set_jenkins_settings(settings)

        logger.info("Starting Jenkins Ops MCP Server...")
        asyncio.run(server.main())

    except KeyboardInterrupt:
        logger.info("Server stopped by user")
        sys.exit(0)
    except Exception as e:
        logger.error(f"Failed to start server: {e}", exc_info=args.verbose)
        sys.exit(1)


__all__ = ['main', 'server', 'setup_logging', '__version__']
