"""
Utility modules for Critic Scorecard.

Cross-cutting concerns:
- Extraction: JSON answers and embedded ratings from free text
- Storage: File I/O for the adjudication queue and reports
"""
