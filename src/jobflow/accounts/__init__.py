"""Users, client credit balances, and worker profiles."""
