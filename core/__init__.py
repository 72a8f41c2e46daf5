"""Core package for the client-side data-access coordination layer.

Submodules are imported explicitly by callers; the package itself stays free of
import-time side effects.
"""
