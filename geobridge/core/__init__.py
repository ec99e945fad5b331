"""Core utilities and shared infrastructure.

- config: Factory configuration loading and validation
- constants: Geometry kind tags, factory flags, defaults
- exceptions: Custom exception hierarchy
"""
