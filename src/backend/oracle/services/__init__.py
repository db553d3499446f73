"""External collaborators: data providers, settlement, notifications."""
