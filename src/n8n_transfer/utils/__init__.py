"""Utility modules for n8n Bridge."""
