"""
API Routers Package

- document_routes: upload, processing and status of a user's manual
- chat_routes: question answering over the manual
"""

from fastapi import APIRouter

from .chat_routes import router as chat_router
from .document_routes import router as document_router

# Create a combined router
api_router = APIRouter()

api_router.include_router(document_router)
api_router.include_router(chat_router)
