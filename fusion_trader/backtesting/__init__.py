from .engine import BacktestingEngine, BacktestResult, SimulatedTrade

__all__ = ["BacktestingEngine", "BacktestResult", "SimulatedTrade"]
