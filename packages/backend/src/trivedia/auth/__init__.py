"""Authentication and authorization.

Learn: Session tokens are stateless JWTs carrying the user id and role.
Every permission check compares roles through auth.roles, and every
guarded route goes through auth.dependencies.require_role.
"""
