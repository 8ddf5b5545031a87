"""Pipeline core: errors, command runner, state machine, orchestrator."""
