"""Minimal NTPv4 time-stamping responder."""
