"""Core book club logic: data model, tally, and phase state machine."""
