"""
Hard errors raised by the costing engine.

Catalog data problems (unknown ingredient, missing price, cycles, odd units)
are never raised; they are reported per line. These exceptions are for
callers that break the contract.
"""


class CostingEngineError(Exception):
    pass


class BatchConfigError(CostingEngineError, ValueError):
    """Batch configuration is missing required numbers or names an unknown container."""


class UnknownCostModeError(CostingEngineError, ValueError):
    def __init__(self, mode):
        super().__init__(f"Unknown cost mode '{mode}' (expected 'total' or 'per_serving')")
        self.mode = mode
