"""Agent loop, orchestrator, checkpoints and supporting runtime pieces."""
