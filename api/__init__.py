"""
api/ - HTTP Presentation Layer
==============================
FastAPI routes exposing the recurring payment operations as JSON.
"""
