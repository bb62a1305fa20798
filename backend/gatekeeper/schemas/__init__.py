"""Pydantic schemas for the HTTP surface and queue payloads."""
