"""Mailmind command line interface."""
