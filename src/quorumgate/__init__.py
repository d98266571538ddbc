"""
QuorumGate - multi-agent weighted consensus validation.

See quorumgate.core.consensus for the engine.
"""

from quorumgate.version import __version__

__all__ = ["__version__"]
