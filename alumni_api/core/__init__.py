"""Runtime plumbing shared by the server and the CLI."""
