"""Pure domain layer: values, events, DTOs, the journal builder and the clock."""
