"""Main entry point for connpool package."""

from connpool.cli.commands import main

if __name__ == '__main__':
    main()
