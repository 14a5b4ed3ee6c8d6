"""HTTP API for the safety pipeline."""
