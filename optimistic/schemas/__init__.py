"""Schemas — pydantic models for server payloads consumed by the client."""
