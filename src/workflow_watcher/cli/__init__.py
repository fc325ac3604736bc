"""CLI for the workflow watcher."""
