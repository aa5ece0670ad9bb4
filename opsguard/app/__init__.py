"""Application package for the opsguard service."""
