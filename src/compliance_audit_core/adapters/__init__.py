"""Adapters: persistence implementations of the unit-of-work protocol.

Contains:
- memory.py - In-process stores with staged, atomic commits
- database.py - SQLAlchemy async engine lifecycle
- repositories.py - SQLAlchemy repositories and SqlAlchemyUnitOfWork
"""

__all__: list[str] = []
