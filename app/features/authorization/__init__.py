"""
Authorization feature module.

Answers whether a subject holds a permission through its assigned roles.
"""
