"""Conversation synchronization and negotiation engine for a barter marketplace."""
