"""Infrastructure layer: persistence, filesystem, integrations and lifecycle."""
