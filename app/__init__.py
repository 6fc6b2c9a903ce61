"""
FastAPI Application Package

This package contains the FastAPI application exposing the market feed.
It provides REST endpoints for snapshots, status and control, and a WebSocket
endpoint pushing feed events.
"""
