"""Domain layer: models, exceptions and provider contracts."""
