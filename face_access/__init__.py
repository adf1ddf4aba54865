"""Face access identity service."""
