"""Pure domain values: statuses, transition table, actors, DTOs, clock, ports."""
