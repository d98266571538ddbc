# quorumgate/core/__init__.py
"""
Core components of QuorumGate.

- consensus: validator registry, score collection, Byzantine filtering,
  weighted aggregation and the decision policy
"""
