"""
Integrations Package

External service integrations:
- Market data cache (prices, OI, pivots, candles)
- Tick subscription bridge
"""
