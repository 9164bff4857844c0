"""Command line entry point for the gateway process (see ``cli.app``)."""
