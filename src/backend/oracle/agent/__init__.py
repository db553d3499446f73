"""
Agent runtime: the execution contract every scoring strategy runs under,
the consensus engine, and the orchestrator that sequences a resolution.
"""
