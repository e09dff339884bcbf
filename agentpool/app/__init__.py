"""HTTP application, configuration and domain models."""
