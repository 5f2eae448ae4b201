"""Deployment of generated portals to Hugging Face Spaces."""
