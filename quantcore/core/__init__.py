"""Domain types and exceptions shared across quantcore."""
