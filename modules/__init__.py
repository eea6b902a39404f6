"""
Orchestrator modules.
"""
