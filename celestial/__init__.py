"""Celestial authentication service."""
