"""
Shared test setup.

Points the application engine at an in-memory database before app.models
is imported, so importing the app never touches ./budget.db.
"""
import os
import sys

sys.path.insert(0, '.')

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
