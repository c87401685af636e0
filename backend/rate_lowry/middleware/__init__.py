"""
Rate Lowry Backend — Middleware Package
=========================================

Middleware Chain (outermost first):
    Request → [Request ID] → [Rate Limit] → [Access Log] → [GZip] → [CORS] → Router

Responses travel back through the same chain in reverse, so the access log
sees the final status code. Request ID is outermost, so every response,
rate-limited ones included, carries X-Request-ID.
"""
