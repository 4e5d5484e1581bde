"""Main entry point when executing jmapbridge as a package.

This allows running the package using python -m jmapbridge.
"""

from jmapbridge.main import cli_entry_point

if __name__ == "__main__":
    cli_entry_point()
