"""Pure lifecycle and ledger rules with no database or HTTP dependencies."""
