"""
FastAPI routers.

- chat: POST /ai/chat, DELETE /ai/chat/memory (authenticated)
- health: GET /health (public)
"""
