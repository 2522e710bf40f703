"""Pydantic schemas for payloads exchanged with collaborating services."""
