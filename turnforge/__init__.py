"""
Turnforge - Deterministic runtime for LLM-described turn-based games.

An upstream generator turns a prose game description into three artifacts
(state schema, transition graph, per-phase instructions). Turnforge is the
part that has to be correct rather than plausible:
- Static validation of the artifacts (no deadlocks, no undefined fields)
- A deterministic router that decides which transition may fire
- A state-delta engine that applies typed mutations to game state
"""

__version__ = "0.1.0"
