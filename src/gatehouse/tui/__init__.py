"""Terminal UI for Gatehouse."""
