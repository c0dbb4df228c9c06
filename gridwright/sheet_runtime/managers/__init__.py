"""Data access managers for the sheet runtime.

Each module provides async functions that encapsulate CRUD operations and
engine orchestration.  Managers accept ``AsyncSession`` as a parameter and
raise domain exceptions (``LookupError``, ``ValueError``), never HTTP
exceptions -- that translation is the router's responsibility.
"""
