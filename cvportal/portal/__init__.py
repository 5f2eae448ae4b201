"""Portal generation: URLs, templates, QR assets and the pipeline orchestrator."""
