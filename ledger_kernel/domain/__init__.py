"""Pure domain layer: clock, balance rules and DTOs (zero I/O)."""
