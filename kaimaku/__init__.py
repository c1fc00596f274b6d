"""Kaimaku - anime opening search and rating service."""
