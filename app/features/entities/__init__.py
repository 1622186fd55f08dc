"""
Hierarchical entity store feature module.

Roles and permissions are each kept as a nested-set tree: every node carries
a ``[left, right]`` interval and ancestry is interval containment.
"""
