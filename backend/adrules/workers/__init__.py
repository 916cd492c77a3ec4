"""
Background workers.

Uses arq for the worker process that hosts the automation engine.
"""
