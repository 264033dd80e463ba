"""Pure domain layer: clock, DTOs, events, pricing and workflow definitions."""
