"""FastAPI admin surface for world controls, team runs and checkpoints."""
