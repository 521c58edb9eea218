"""Core domain models: payloads, delivery results, gateway targets, config, errors."""
