"""Lending Library - Core Application Package

This package contains the core application modules including:
- API endpoints (api.py)
- Book record service (library.py)
- CLI interface (main.py)
- Data model (book.py)
- Database layer (database.py)
"""

__version__ = "1.0.0"
