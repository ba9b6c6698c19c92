"""Pure domain layer: availability arithmetic, selection rules, transfer states, DTOs."""
