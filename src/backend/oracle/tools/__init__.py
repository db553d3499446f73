"""
Scoring strategies:
  - evidence_collector: provider fan-out plus a baseline read of the evidence
  - evidence_validator: quality checks and majority vote over surviving records
  - conflict_arbiter:   cross-source conflict detection and the dispute override
  - confidence_scorer:  five-factor trustworthiness estimate
"""
