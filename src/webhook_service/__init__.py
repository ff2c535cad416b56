"""Webhook delivery engine for the cloud-resource booking platform."""
