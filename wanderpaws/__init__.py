"""WanderPaws subscription ledger service."""
