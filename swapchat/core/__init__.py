"""Configuration, identity, storage and session orchestration."""
