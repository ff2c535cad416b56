"""Shared infrastructure for aiohttp backend services."""
