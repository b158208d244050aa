"""Limits module — limit resolver, usage ledger, config and periodic reset."""
