"""
Services Package

Event bus, polling scheduler and market feed used by the FastAPI application.
"""
