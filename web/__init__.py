"""
ChefFlow - Web Request Surface.

Provides the HTTP front end for the kitchen bridge:
- Order intake, cancel and complete routes
- Live queue and order history
- Period analytics
"""

from .main import create_app

__all__ = [
    'create_app',
]
