"""Active stream set and its reconciliation against Helix."""
