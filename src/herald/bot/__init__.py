"""Discord-facing layer: cogs for commands and event listeners."""
