"""Pure domain layer: clock, ids, movement kinds, policy and DTOs."""
