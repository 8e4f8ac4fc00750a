"""Inbound message intake pipeline."""
