"""Monitoring package for the community scraper."""
