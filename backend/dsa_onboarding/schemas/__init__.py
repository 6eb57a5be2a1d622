"""Pydantic request/response schemas (wire format is camelCase)."""
