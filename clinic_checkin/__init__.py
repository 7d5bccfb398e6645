"""Clinic check-in backend: the patient visit lifecycle as a FastAPI service."""

__version__ = "1.0.0"
