"""
Configuration.

Settings, constants and database session factory.
"""
