"""Image export and ISO assembly pipelines."""
