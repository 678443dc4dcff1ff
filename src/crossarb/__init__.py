"""
Cross-Exchange Arbitrage Engine.

An asynchronous trading bot that watches spot prices on several
exchanges, detects fee-adjusted price gaps for the same asset and
executes the matching buy/sell legs.
"""

__version__ = "1.0.0"
