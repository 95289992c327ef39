"""Functional modules for pathspray."""
