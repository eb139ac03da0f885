"""Integration tests for the event photo pipeline.

Real SQLite store and local blob store wired to the in-memory vision service:
- Photo upload and registration
- Queue draining into the event collection
- Selfie search with per-photo dedup and URL join
- Background worker pick-up of late uploads
"""
