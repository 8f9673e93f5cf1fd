"""
Assistant Module
================

Bounded context for source-grounded support answers.

Responsibilities:
- Retrieve knowledge-base documents by hybrid (vector + lexical) search
- Judge their relevance with a language model
- Generate short answers that cite only retrieved documents
- Keep per-channel conversation history
- Deliver answers over the messaging gateway or the direct HTTP channel
"""
