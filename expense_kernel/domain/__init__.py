"""Pure domain value objects for the expense kernel.  ZERO I/O."""
