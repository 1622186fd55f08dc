"""
Assignment feature module.

Edges between roles and permissions, and between roles and subjects.
"""
