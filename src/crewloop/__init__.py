"""Agent orchestration runtime: team loops, delegation, checkpoints and world controls."""

__version__ = "0.1.0"
