"""
Trade Decision Engine.

Decision support for equity swing trades:
- A logistic-regression classifier that scores soft entry signals, with a
  veto layer on top
- An ATR-based trade outcome simulator with a partial take-profit ladder
- A portfolio risk allocator that sizes new positions within risk budgets
"""

__version__ = "1.0.0"
