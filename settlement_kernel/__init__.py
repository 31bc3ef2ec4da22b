"""
Settlement Kernel

The settlement bundle engine of the freight back office:
- Atomic bundle creation from completed, unsettled order charges
- No order charge is ever settled twice
- Bundle-level and item-level adjustments with from-scratch recomputation
- draft -> issued -> paid / canceled lifecycle with serialized transitions
"""

__version__ = "0.1.0"
