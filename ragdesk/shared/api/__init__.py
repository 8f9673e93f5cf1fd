"""
Shared API Layer
================

Middleware and exception handlers common to every router.
"""
