"""
Infrastructure Package
======================

Database and external engine clients shared by the application modules.
"""
