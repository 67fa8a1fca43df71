"""Personal stock-portfolio tracker: trades, cash, cost basis and allocation."""
