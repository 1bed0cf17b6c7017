"""Pure domain: requests, the approval state machine and storage ports."""
