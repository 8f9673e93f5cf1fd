"""
Infrastructure Layer
=====================

Low-level technical concerns shared across modules (logging setup).
"""
