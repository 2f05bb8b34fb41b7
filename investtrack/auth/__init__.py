"""Credential handling shared by the data store and the migration job."""
