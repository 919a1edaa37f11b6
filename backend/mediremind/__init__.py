"""MediRemind account and verification API."""
