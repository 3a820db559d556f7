#!/usr/bin/env python3
"""
Main entry point for running the Jenkins Ops MCP Server as a module.

Usage:
    python -m jenkins_ops_mcp [options]

Options:
    --env-file PATH    Path to custom .env file
    --verbose, -v      Enable verbose logging
    --version          Show version and exit
    --help, -h         Show help message
"""

from . import main

if __name__ == "__main__":
    main()
