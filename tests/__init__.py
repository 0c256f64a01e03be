"""
Fusion Trader test suite.

- unit: Unit tests for individual components
- integration: Decision cycles, the polling loop and the backtester
"""
