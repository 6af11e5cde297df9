"""medtrack: dose reconciliation and adherence tracking for scheduled medications."""
