"""Two-level approval workflow for Cash Advance and Liquidation requests."""
