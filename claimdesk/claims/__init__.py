"""Claims module — Claim model, state machine, policy and workflow service."""
