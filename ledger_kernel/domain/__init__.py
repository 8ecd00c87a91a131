"""Pure domain logic: clock, split calculation, metadata variants, matching policy, DTOs."""
