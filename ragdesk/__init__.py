"""
RAGDesk
=======

Retrieval-augmented support assistant served over a WhatsApp gateway
webhook and a direct HTTP chat endpoint.
"""

__version__ = "1.0.0"
