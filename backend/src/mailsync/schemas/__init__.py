"""Pydantic schemas for the MailSync API."""
