"""
GRBL CLI - A command-line tool for driving GRBL motion controllers
"""

__version__ = "0.1.0"


# This function is a direct entry point for CLI use
def cli_main():
    """
    Entry point for the CLI command.
    This function is referenced in pyproject.toml
    """
    import sys
    from grbl_cli.main import main
    sys.exit(main())
