"""Pure reconciliation, store, actor and negotiation services."""
