"""
Pipeline stages for Critic Scorecard.

- Score Normalizer
- Judgment Oracle
- Ensemble Consensus Scorer
- Statistical Auditor
- Adjudication State Machine
- Ingestion Agent
"""
