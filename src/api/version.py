"""API version constant, kept apart from ``main.py`` so middleware can import it."""

API_VERSION = "0.1.0"
