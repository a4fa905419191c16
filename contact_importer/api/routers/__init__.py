"""
FastAPI routers for organizing API endpoints.

This package contains the routers for the contact import flow and the
custom field catalogue.
"""
