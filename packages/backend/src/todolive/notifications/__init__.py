"""Notification persistence and rendering."""
