"""
Core modules for AI User Control.

This package contains identity unification, directory lookups,
source collection and usage/spending aggregation.
"""
