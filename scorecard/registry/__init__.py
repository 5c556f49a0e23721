"""
Review Registry Module.

Single source of truth for persisted review records.
"""
