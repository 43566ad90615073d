"""HTTP status API for the responder."""
