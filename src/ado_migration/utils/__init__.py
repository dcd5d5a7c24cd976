"""Shared utilities for ADO Bridge."""
