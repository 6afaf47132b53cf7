"""Integration tests for ruleflow.

These tests run real shell commands through the local and cluster executors.

Run with: pytest tests/integration/ -v
"""
