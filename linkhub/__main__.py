"""Main entry point when executing linkhub as a package.

This allows running the package using python -m linkhub.
"""

from linkhub.main import cli_entry_point

if __name__ == "__main__":
    cli_entry_point()
