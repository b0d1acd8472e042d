"""HTTP client layer for talking to n8n instances."""
