"""
Command line interface for Switchboard.
"""

from switchboard.cli.main import cli

__all__ = ["cli"]
