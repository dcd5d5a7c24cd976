"""Command-line interface for ADO Bridge."""
