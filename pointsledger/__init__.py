"""Points ledger for the campus loyalty platform."""
