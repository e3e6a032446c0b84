"""Verdex seed inventory service."""
