"""Utility modules for the observation service."""
