"""Task lifecycle & assignment engine.

This package provides the task/project/engineer model, the file-backed
store, the assignment state machine, the recommendation gateway, the board
reconciliation protocol and project archival.
"""
