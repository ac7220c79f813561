"""Clients for the upstream API, the warehouse and the staging object store."""
