"""
Shared Kernel Module
====================

Generic infrastructure used by the assistant bounded context: structured
logging and HTTP middleware.

DO NOT add retrieval or conversation logic to the shared kernel.
"""
