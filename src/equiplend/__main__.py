"""Main entry point for the equiplend package."""

from equiplend.cli import main

if __name__ == "__main__":
    main()
