"""Clients for the external migration tool and the GitHub API."""
