"""Ownership bridge between Python objects and engine handles.

- factory: Factory lifecycle, parsing, serialisation and builders
- protocol: Wrap / Unwrap / Detach of native geometry handles
- cast: Coercion of convertible objects into a factory's geometries
- equality: Deep coordinate equality primitives
"""
