"""
Signal engines.

- odds: Price conversions and vig removal (pure functions)
- ev: Positive-EV candidate search
- arbitrage: Cross-book arbitrage validation and stake allocation
- middles: Line-gap detection scored with key numbers
- line_shopping: Best available price per selection

Import from the submodules directly; the snapshot schemas depend on
``engine.odds``, so this package does not re-export.
"""
