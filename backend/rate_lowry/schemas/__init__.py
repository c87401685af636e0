"""Pydantic request/response schemas. Wire format is camelCase."""
