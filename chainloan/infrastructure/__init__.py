"""Infrastructure: ledger adapters and in-memory stores."""
