"""
FastAPI RESTful API for the Book Review service.

This module provides a REST API for:
- Book catalog creation, browsing and full-text search
- Per-user book reviews with aggregate ratings
- JWT bearer authentication with signup and login
"""
