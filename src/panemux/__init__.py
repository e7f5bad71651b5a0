"""panemux: persistent, multiplexed shell sessions for worktree panes."""

__version__ = "0.1.0"
