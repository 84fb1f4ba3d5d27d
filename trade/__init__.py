"""Trade state machine and progress store."""
