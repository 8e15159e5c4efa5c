"""Integrations with the key-value store, the user directory and add-ons."""
