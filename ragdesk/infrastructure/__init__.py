"""
Infrastructure Layer
====================

Provider adapters: database engine, LLM clients, hybrid search, messaging
gateway.
"""
