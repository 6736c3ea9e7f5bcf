"""Backtesting engine, position sizing and ledger statistics.
Replays a strategy bar by bar over historical candles and summarizes the resulting trades.
"""
