"""Helpers shared by services and controllers: pagination, field changes,
blob storage, YAML parsing, background import jobs and change events."""
