"""
Orchestration services.
"""
