"""
Shared components used by all orchestrator modules.
"""
