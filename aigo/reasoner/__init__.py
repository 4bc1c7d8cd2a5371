"""Reasoning loop, conversation model and execution events."""
